from datetime import datetime
from typing import List, Optional
from sqlalchemy import select
from database.db_utils import as_utc
from database.models.median_snapshot import MedianSnapshot
from database.repositories.base_repository import BaseRepository


class MedianRepository(BaseRepository[MedianSnapshot]):
    """
    Repository for the append-only median APY snapshots (one row per timestamp).
    """
    def __init__(self, engine=None):
        super().__init__(model_class=MedianSnapshot, engine=engine)

    def insert_median(self, unique_pools: int, median_apy: float, timestamp: datetime) -> MedianSnapshot:
        """Append a snapshot. Raises DuplicateEntityError if one already exists for the timestamp."""
        return self.create(MedianSnapshot(
            unique_pools=unique_pools,
            median_apy=median_apy,
            timestamp=as_utc(timestamp),
        ))

    def get_medians(self, start: Optional[datetime] = None) -> List[MedianSnapshot]:
        with self.session() as session:
            stmt = select(MedianSnapshot)
            if start is not None:
                stmt = stmt.where(MedianSnapshot.timestamp >= as_utc(start))
            stmt = stmt.order_by(MedianSnapshot.timestamp)
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results
