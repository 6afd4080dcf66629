from database.models.base import Base
from database.models.pool_config import PoolConfig
from database.models.yield_observation import YieldObservation
from database.models.pool_stat import PoolStat
from database.models.median_snapshot import MedianSnapshot
from database.models.enriched_pool import EnrichedPool
