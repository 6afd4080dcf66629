import requests
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from config import DEFILLAMA_POOLS_URL, DEFILLAMA_POOL_PAGE_URL, REQUEST_TIMEOUT
from database.repositories.config_repository import ConfigRepository
from database.repositories.exceptions import RepositoryError
from database.repositories.stat_repository import StatRepository
from database.repositories.yield_repository import YieldRepository
from data_processing.ingest_yields import YieldObservationInput, ingest_observation

logger = logging.getLogger(__name__)


def parse_pool_config(pool_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Maps one pool entry of the yields feed onto config columns.
    Returns None when the entry lacks pool, project, chain or symbol.
    """
    pool = pool_data.get('pool')
    chain = pool_data.get('chain')
    project = pool_data.get('project')
    symbol = pool_data.get('symbol')

    if not all([pool, chain, project, symbol]):
        return None

    return {
        'pool': pool,
        'project': project,
        'chain': chain,
        'symbol': symbol,
        'pool_meta': pool_data.get('poolMeta'),
        'underlying_tokens': pool_data.get('underlyingTokens'),
        'reward_tokens': pool_data.get('rewardTokens'),
        'url': pool_data.get('url') or f"{DEFILLAMA_POOL_PAGE_URL}{pool}",
    }


def parse_observation(pool_data: Dict[str, Any], timestamp: datetime) -> YieldObservationInput:
    return YieldObservationInput(
        pool=pool_data['pool'],
        timestamp=timestamp,
        tvl_usd=pool_data.get('tvlUsd'),
        apy=pool_data.get('apy'),
        apy_base=pool_data.get('apyBase'),
        apy_reward=pool_data.get('apyReward'),
    )


def store_pools(pools_data: List[Dict[str, Any]], timestamp: datetime,
                config_repo: ConfigRepository, yield_repo: YieldRepository,
                stat_repo: StatRepository) -> Tuple[int, int, int]:
    """
    Upserts configs for every valid feed entry, then ingests one observation per pool.
    Returns (valid pools, observations ingested, observations rejected).
    """
    configs = []
    valid_pools = []
    for pool_data in pools_data:
        config_data = parse_pool_config(pool_data)
        if config_data is None:
            logger.warning(f"Skipping pool with missing essential data: {pool_data.get('pool')}")
            continue
        configs.append(config_data)
        valid_pools.append(pool_data)

    if not configs:
        logger.info("No valid pools to insert after filtering.")
        return 0, 0, 0

    config_repo.bulk_upsert_configs(configs)
    logger.info(f"Successfully inserted/updated {len(configs)} pool configs.")

    ingested = 0
    rejected = 0
    for pool_data in valid_pools:
        try:
            ingest_observation(parse_observation(pool_data, timestamp), yield_repo, stat_repo)
            ingested += 1
        except RepositoryError as e:
            rejected += 1
            logger.warning(f"Rejected observation for pool {pool_data['pool']}: {e}")

    return len(configs), ingested, rejected


def fetch_defillama_pools(timestamp: Optional[datetime] = None,
                          config_repo: Optional[ConfigRepository] = None,
                          yield_repo: Optional[YieldRepository] = None,
                          stat_repo: Optional[StatRepository] = None):
    url = DEFILLAMA_POOLS_URL
    if timestamp is None:
        # Hourly granularity
        timestamp = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)

    # Initialize repositories
    config_repo = config_repo or ConfigRepository()
    yield_repo = yield_repo or YieldRepository(engine=config_repo.engine)
    stat_repo = stat_repo or StatRepository(engine=config_repo.engine)

    try:
        logger.info("Fetching DeFiLlama pools data...")
        response = requests.get(url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()  # Raise an exception for HTTP errors
        raw_data = response.json()
    except requests.exceptions.RequestException as e:
        logger.error(f"Error fetching DeFiLlama pools: {e}")
        raise
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON response: {e}")
        raise

    pools_data = raw_data.get('data') or []
    total_pools_from_api = len(pools_data)
    processed_pools, ingested, rejected = store_pools(pools_data, timestamp, config_repo, yield_repo, stat_repo)

    # Print detailed summary
    logger.info("\n" + "="*60)
    logger.info("📥 DEFILLAMA POOLS INGESTION SUMMARY")
    logger.info("="*60)
    logger.info(f"🌐 API endpoint: {url}")
    logger.info(f"🕐 Observation timestamp: {timestamp.isoformat()}")
    logger.info(f"📊 Total pools from API: {total_pools_from_api:,}")
    logger.info(f"✅ Valid pools processed: {processed_pools:,}")
    logger.info(f"❌ Skipped (missing data): {total_pools_from_api - processed_pools:,}")
    logger.info(f"📈 Observations ingested: {ingested:,}")
    logger.info(f"🚫 Observations rejected: {rejected:,}")
    if total_pools_from_api > 0:
        logger.info(f"📊 Processing success rate: {(ingested/total_pools_from_api*100):.1f}%")
    logger.info("="*60)

    return {"total": total_pools_from_api, "valid": processed_pools, "ingested": ingested, "rejected": rejected}


if __name__ == "__main__":
    fetch_defillama_pools()
