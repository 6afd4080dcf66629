from database.repositories.base_repository import BaseRepository
from database.repositories.config_repository import ConfigRepository
from database.repositories.yield_repository import YieldRepository
from database.repositories.stat_repository import StatRepository
from database.repositories.median_repository import MedianRepository
from database.repositories.enriched_repository import EnrichedRepository

__all__ = [
    'BaseRepository',
    'ConfigRepository',
    'YieldRepository',
    'StatRepository',
    'MedianRepository',
    'EnrichedRepository',
]
