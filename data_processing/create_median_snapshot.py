import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import numpy as np

from database.repositories.median_repository import MedianRepository
from database.repositories.yield_repository import YieldRepository

logger = logging.getLogger(__name__)


def compute_median_snapshot(latest_observations: List[Any]) -> Optional[Tuple[int, float]]:
    """
    Computes (unique pool count, median APY) over the latest observation of each pool.
    Rows are (config_id, pool, timestamp, tvl_usd, apy); pools without a finite APY are ignored.
    Returns None when no pool qualifies.
    """
    apy_by_pool = {}
    for row in latest_observations:
        apy = row[4]
        if apy is None:
            continue
        apy = float(apy)
        if np.isfinite(apy):
            apy_by_pool[row[1]] = apy

    if not apy_by_pool:
        return None
    return len(apy_by_pool), float(np.median(list(apy_by_pool.values())))


def create_median_snapshot(timestamp: Optional[datetime] = None,
                           yield_repo: Optional[YieldRepository] = None,
                           median_repo: Optional[MedianRepository] = None):
    """
    Appends a median snapshot for the given timestamp (default: now, truncated to the hour).
    Raises DuplicateEntityError when a snapshot already exists for that timestamp.
    """
    yield_repo = yield_repo or YieldRepository()
    median_repo = median_repo or MedianRepository(engine=yield_repo.engine)
    if timestamp is None:
        timestamp = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)

    logger.info("Starting median snapshot calculation...")
    snapshot = compute_median_snapshot(yield_repo.get_latest_observations())
    if snapshot is None:
        logger.warning("No pools with a valid APY found. Skipping median snapshot.")
        return None

    unique_pools, median_apy = snapshot
    median = median_repo.insert_median(unique_pools, median_apy, timestamp)
    logger.info(f"✅ Median snapshot stored: {unique_pools:,} pools, median APY {median_apy:.4f}% @ {timestamp.isoformat()}")
    return median


if __name__ == "__main__":
    create_median_snapshot()
