import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Iterable, List

from config import MISSING_RETURN_POLICY, DAYS_PER_YEAR
from database.db_utils import as_utc
from database.repositories.exceptions import InvalidInputError, NotFoundError
from database.repositories.stat_repository import StatRepository
from database.repositories.yield_repository import YieldRepository
from data_processing.rolling_stats import RollingStats, daily_return_from_apy, update_rolling_stats

logger = logging.getLogger(__name__)

# yield.tvlUsd is a bigint
MAX_TVL_USD = 2 ** 63 - 1


@dataclass(frozen=True)
class YieldObservationInput:
    pool: str
    timestamp: datetime
    tvl_usd: float
    apy: float
    apy_base: Optional[float] = None
    apy_reward: Optional[float] = None


def _as_float(name, value, required=True):
    if value is None:
        if required:
            raise InvalidInputError(f"{name} is required")
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    return number


def validate_observation(observation: YieldObservationInput) -> YieldObservationInput:
    """
    Check an observation and return it normalized: UTC timestamp, integer tvl, float yields.
    Raises InvalidInputError on negative or out of range tvl, or non-finite APY values.
    """
    if not isinstance(observation.timestamp, datetime):
        raise InvalidInputError(f"timestamp must be a datetime, got {observation.timestamp!r}")

    tvl_usd = _as_float("tvlUsd", observation.tvl_usd)
    if tvl_usd < 0:
        raise InvalidInputError(f"tvlUsd must not be negative, got {tvl_usd}")
    tvl_usd = int(round(tvl_usd))
    if tvl_usd > MAX_TVL_USD:
        raise InvalidInputError(f"tvlUsd exceeds the bigint range, got {tvl_usd}")

    return YieldObservationInput(
        pool=observation.pool,
        timestamp=as_utc(observation.timestamp),
        tvl_usd=tvl_usd,
        apy=_as_float("apy", observation.apy),
        apy_base=_as_float("apyBase", observation.apy_base, required=False),
        apy_reward=_as_float("apyReward", observation.apy_reward, required=False),
    )


def ingest_observation(
    observation: YieldObservationInput,
    yield_repo: Optional[YieldRepository] = None,
    stat_repo: Optional[StatRepository] = None,
    missing_return_policy: str = MISSING_RETURN_POLICY,
) -> RollingStats:
    """
    Append one observation to the pool's yield history and fold it into the pool's
    rolling statistics, in a single transaction.

    Raises:
        InvalidInputError: malformed observation, or timestamp not after the pool's latest one
        NotFoundError: no config exists for the pool
        ConstraintViolationError: the database rejected the write
    """
    yield_repo = yield_repo or YieldRepository()
    stat_repo = stat_repo or StatRepository(engine=yield_repo.engine)
    observation = validate_observation(observation)

    with yield_repo.session() as session:
        config = yield_repo.lock_config(session, observation.pool)
        if config is None:
            raise NotFoundError(f"No config for pool {observation.pool}")

        latest = yield_repo.get_latest_timestamp(config.config_id, session=session)
        if latest is not None and observation.timestamp <= latest:
            raise InvalidInputError(
                f"Out of order observation for pool {observation.pool}: "
                f"{observation.timestamp.isoformat()} is not after {latest.isoformat()}"
            )

        yield_repo.add_observation(
            session,
            config.config_id,
            timestamp=observation.timestamp,
            tvl_usd=observation.tvl_usd,
            apy=observation.apy,
            apy_base=observation.apy_base,
            apy_reward=observation.apy_reward,
        )

        existing = stat_repo.get_stat_for_update(session, config.config_id)
        previous = RollingStats.from_row(existing) if existing is not None else None
        stats = update_rolling_stats(
            previous,
            observation.apy,
            daily_return_from_apy(observation.apy, DAYS_PER_YEAR),
            missing_return_policy=missing_return_policy,
        )
        stat_repo.save_stat(session, config.config_id, stats.as_columns(), existing=existing)

    logger.debug(f"Ingested {observation.pool} @ {observation.timestamp.isoformat()} (count={stats.count})")
    return stats


def ingest_observations(
    observations: Iterable[YieldObservationInput],
    yield_repo: Optional[YieldRepository] = None,
    stat_repo: Optional[StatRepository] = None,
    missing_return_policy: str = MISSING_RETURN_POLICY,
) -> List[RollingStats]:
    """
    Ingest observations one by one, each in its own transaction. The first failure propagates;
    observations ingested before it stay committed.
    """
    yield_repo = yield_repo or YieldRepository()
    stat_repo = stat_repo or StatRepository(engine=yield_repo.engine)
    return [
        ingest_observation(o, yield_repo, stat_repo, missing_return_policy=missing_return_policy)
        for o in observations
    ]
