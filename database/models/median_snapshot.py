import uuid
from sqlalchemy import Column, Integer, Numeric, DateTime, Uuid
from database.models.base import Base

class MedianSnapshot(Base):
    __tablename__ = 'median'

    median_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    unique_pools = Column("uniquePools", Integer, nullable=False)
    median_apy = Column("medianAPY", Numeric(asdecimal=False), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, unique=True)
