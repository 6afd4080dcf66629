import uuid
from typing import List, Optional, Dict, Any
from sqlalchemy import select
from database.models.pool_config import PoolConfig
from database.repositories.base_repository import BaseRepository

# Mutable columns of a pool config, keyed the same way callers pass them in
CONFIG_FIELDS = (
    'project', 'chain', 'symbol', 'pool_meta', 'underlying_tokens', 'reward_tokens', 'url'
)


class ConfigRepository(BaseRepository[PoolConfig]):
    """
    Repository for PoolConfig entity operations.
    Configs are inserted on first sight of a pool and updated in place thereafter, never deleted.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=PoolConfig, engine=engine)

    def insert_config(self, config_data: Dict[str, Any]) -> PoolConfig:
        """
        Insert a new pool config. Raises DuplicateEntityError if the pool key already exists.
        """
        config = PoolConfig(
            config_id=config_data.get('config_id') or uuid.uuid4(),
            pool=config_data['pool'],
            **{field: config_data.get(field) for field in CONFIG_FIELDS}
        )
        return self.create(config)

    def upsert_config(self, config_data: Dict[str, Any]) -> PoolConfig:
        """Insert the pool config if unseen, otherwise update its fields keeping config_id."""
        return self.bulk_upsert_configs([config_data])[config_data['pool']]

    def bulk_upsert_configs(self, configs_data: List[Dict[str, Any]]) -> Dict[str, PoolConfig]:
        """
        Bulk upsert pool configs in one transaction.
        Returns a mapping of pool key -> PoolConfig.
        """
        if not configs_data:
            return {}

        pools = [c['pool'] for c in configs_data]
        result = {}
        with self.session() as session:
            existing = {}
            # Chunked to stay under the bound parameter limit of the driver
            for i in range(0, len(pools), 1000):
                stmt = select(PoolConfig).where(PoolConfig.pool.in_(pools[i:i + 1000]))
                existing.update({c.pool: c for c in session.execute(stmt).scalars()})

            for data in configs_data:
                config = existing.get(data['pool'])
                if config is None:
                    config = PoolConfig(config_id=uuid.uuid4(), pool=data['pool'])
                    session.add(config)
                    existing[data['pool']] = config
                for field in CONFIG_FIELDS:
                    setattr(config, field, data.get(field))
                result[data['pool']] = config
            session.flush()
        return result

    def get_config_by_pool(self, pool: str) -> Optional[PoolConfig]:
        with self.session() as session:
            stmt = select(PoolConfig).where(PoolConfig.pool == pool)
            return session.execute(stmt).scalar_one_or_none()

    def get_config_id_map(self) -> Dict[str, uuid.UUID]:
        """Get pool key -> config_id for all configs."""
        with self.session() as session:
            stmt = select(PoolConfig.pool, PoolConfig.config_id)
            return {pool: config_id for pool, config_id in session.execute(stmt).all()}

    def get_all_configs(self) -> List[PoolConfig]:
        with self.session() as session:
            stmt = select(PoolConfig).order_by(PoolConfig.pool)
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results
