import uuid
from typing import List, Optional, Dict, Any, Tuple
from sqlalchemy import select
from sqlalchemy.orm import Session
from database.models.pool_config import PoolConfig
from database.models.pool_stat import PoolStat
from database.repositories.base_repository import BaseRepository


class StatRepository(BaseRepository[PoolStat]):
    """
    Repository for the per-pool rolling statistics (one row per config, stat_id = config_id).
    """
    def __init__(self, engine=None):
        super().__init__(model_class=PoolStat, engine=engine)

    def get_stat_for_update(self, session: Session, config_id: uuid.UUID) -> Optional[PoolStat]:
        stmt = select(PoolStat).where(PoolStat.stat_id == config_id).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def save_stat(self, session: Session, config_id: uuid.UUID, values: Dict[str, Any],
                  existing: Optional[PoolStat] = None) -> PoolStat:
        """Write the new statistics for a pool inside the caller's transaction."""
        stat = existing
        if stat is None:
            stat = PoolStat(stat_id=config_id)
            session.add(stat)
        for column, value in values.items():
            setattr(stat, column, value)
        session.flush()
        return stat

    def get_stat(self, config_id: uuid.UUID) -> Optional[PoolStat]:
        return self.get(config_id)

    def get_stat_by_pool(self, pool: str) -> Optional[PoolStat]:
        with self.session() as session:
            stmt = (
                select(PoolStat)
                .join(PoolConfig, PoolConfig.config_id == PoolStat.stat_id)
                .where(PoolConfig.pool == pool)
            )
            return session.execute(stmt).scalar_one_or_none()

    def get_all_stats(self) -> List[Tuple[PoolConfig, PoolStat]]:
        """Get (config, stat) pairs for every pool that has statistics."""
        with self.session() as session:
            stmt = (
                select(PoolConfig, PoolStat)
                .join(PoolStat, PoolStat.stat_id == PoolConfig.config_id)
                .order_by(PoolConfig.pool)
            )
            results = [tuple(row) for row in session.execute(stmt).all()]
            session.expunge_all()
            return results
