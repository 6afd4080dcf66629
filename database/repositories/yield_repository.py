import uuid
from datetime import datetime
from typing import List, Optional, Any, Iterable
import pandas as pd
from sqlalchemy import select, func
from sqlalchemy.orm import Session
from database.db_utils import as_utc
from database.models.pool_config import PoolConfig
from database.models.yield_observation import YieldObservation
from database.repositories.base_repository import BaseRepository

HISTORY_COLUMNS = ['config_id', 'pool', 'timestamp', 'tvl_usd', 'apy', 'apy_base', 'apy_reward']


class YieldRepository(BaseRepository[YieldObservation]):
    """
    Repository for the append-only yield timeseries.

    lock_config and add_observation take the caller's session so that
    validation, the insert and the stat update share one transaction.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=YieldObservation, engine=engine)

    def lock_config(self, session: Session, pool: str) -> Optional[PoolConfig]:
        """
        Load a pool's config and lock its row until the transaction ends, which
        serializes concurrent ingestion for the same pool.
        """
        stmt = select(PoolConfig).where(PoolConfig.pool == pool).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def get_latest_timestamp(self, config_id: uuid.UUID, session: Optional[Session] = None) -> Optional[datetime]:
        """Latest recorded observation timestamp for a pool, in UTC."""
        stmt = select(func.max(YieldObservation.timestamp)).where(YieldObservation.config_id == config_id)
        if session is not None:
            return as_utc(session.execute(stmt).scalar())
        with self.session() as own_session:
            return as_utc(own_session.execute(stmt).scalar())

    def add_observation(self, session: Session, config_id: uuid.UUID, timestamp: datetime, tvl_usd: int,
                        apy: float, apy_base: Optional[float] = None,
                        apy_reward: Optional[float] = None) -> YieldObservation:
        observation = YieldObservation(
            yield_id=uuid.uuid4(),
            config_id=config_id,
            timestamp=timestamp,
            tvl_usd=tvl_usd,
            apy=apy,
            apy_base=apy_base,
            apy_reward=apy_reward,
        )
        session.add(observation)
        session.flush()
        return observation

    def get_history(self, config_id: uuid.UUID, start: Optional[datetime] = None,
                    end: Optional[datetime] = None) -> List[YieldObservation]:
        """Get a pool's observations ordered by timestamp, optionally within [start, end]."""
        with self.session() as session:
            stmt = select(YieldObservation).where(YieldObservation.config_id == config_id)
            if start:
                stmt = stmt.where(YieldObservation.timestamp >= as_utc(start))
            if end:
                stmt = stmt.where(YieldObservation.timestamp <= as_utc(end))
            stmt = stmt.order_by(YieldObservation.timestamp)
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            for observation in results:
                observation.timestamp = as_utc(observation.timestamp)
            return results

    def count_observations(self, config_id: uuid.UUID) -> int:
        with self.session() as session:
            stmt = select(func.count()).select_from(YieldObservation).where(YieldObservation.config_id == config_id)
            return session.execute(stmt).scalar()

    def get_history_frame(self, config_ids: Optional[Iterable[uuid.UUID]] = None,
                          start: Optional[datetime] = None) -> pd.DataFrame:
        """
        Get the yield history as a DataFrame with columns
        config_id, pool, timestamp, tvl_usd, apy, apy_base, apy_reward; sorted by pool and timestamp.
        Only observations at or after start are read when it is given.
        """
        stmt = select(
            YieldObservation.config_id,
            PoolConfig.pool,
            YieldObservation.timestamp,
            YieldObservation.tvl_usd,
            YieldObservation.apy,
            YieldObservation.apy_base,
            YieldObservation.apy_reward,
        ).join(PoolConfig, PoolConfig.config_id == YieldObservation.config_id)
        if config_ids is not None:
            stmt = stmt.where(YieldObservation.config_id.in_(list(config_ids)))
        if start:
            stmt = stmt.where(YieldObservation.timestamp >= as_utc(start))
        stmt = stmt.order_by(PoolConfig.pool, YieldObservation.timestamp)

        with self.session() as session:
            rows = session.execute(stmt).all()

        df = pd.DataFrame(rows, columns=HISTORY_COLUMNS)
        if not df.empty:
            df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True)
        return df

    def get_latest_observations(self) -> List[Any]:
        """
        Get the most recent observation of every pool.
        Returns list of (config_id, pool, timestamp, tvl_usd, apy).
        """
        latest = (
            select(
                YieldObservation.config_id.label('config_id'),
                func.max(YieldObservation.timestamp).label('timestamp'),
            )
            .group_by(YieldObservation.config_id)
            .subquery()
        )
        stmt = (
            select(
                YieldObservation.config_id,
                PoolConfig.pool,
                YieldObservation.timestamp,
                YieldObservation.tvl_usd,
                YieldObservation.apy,
            )
            .join(latest, (latest.c.config_id == YieldObservation.config_id)
                  & (latest.c.timestamp == YieldObservation.timestamp))
            .join(PoolConfig, PoolConfig.config_id == YieldObservation.config_id)
            .order_by(PoolConfig.pool)
        )
        with self.session() as session:
            return session.execute(stmt).all()
