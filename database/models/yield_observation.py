import uuid
from sqlalchemy import Column, BigInteger, Numeric, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship
from database.models.base import Base

class YieldObservation(Base):
    __tablename__ = 'yield'

    # Append only, one row per pool and ingestion timestamp
    yield_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    config_id = Column("configID", Uuid, ForeignKey('config.config_id'), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    tvl_usd = Column("tvlUsd", BigInteger, nullable=False)
    apy = Column(Numeric(asdecimal=False), nullable=False)
    apy_base = Column("apyBase", Numeric(asdecimal=False))
    apy_reward = Column("apyReward", Numeric(asdecimal=False))

    config = relationship("PoolConfig", back_populates="yields")

    __table_args__ = (
        Index('yield_configID_timestamp_idx', config_id, timestamp),
    )
