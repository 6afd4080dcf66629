import uuid
from typing import List, Optional, Dict, Any
from sqlalchemy import select
from database.models.enriched_pool import EnrichedPool
from database.repositories.base_repository import BaseRepository


class EnrichedRepository(BaseRepository[EnrichedPool]):
    """
    Repository for enrichment output, overwritten in place each time enrichment runs.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=EnrichedPool, engine=engine)

    def bulk_upsert_enriched(self, enriched_data: List[Dict[str, Any]]) -> int:
        """
        Upsert enriched rows keyed by enriched_id (= config_id).
        Returns the number of rows written.
        """
        if not enriched_data:
            return 0

        with self.session() as session:
            ids = [row['enriched_id'] for row in enriched_data]
            stmt = select(EnrichedPool).where(EnrichedPool.enriched_id.in_(ids))
            existing = {e.enriched_id: e for e in session.execute(stmt).scalars()}

            for row in enriched_data:
                enriched = existing.get(row['enriched_id'])
                if enriched is None:
                    enriched = EnrichedPool(enriched_id=row['enriched_id'])
                    session.add(enriched)
                for column, value in row.items():
                    if column != 'enriched_id':
                        setattr(enriched, column, value)
        return len(enriched_data)

    def get_enriched(self, config_id: uuid.UUID) -> Optional[EnrichedPool]:
        return self.get(config_id)
