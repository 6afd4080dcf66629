import uuid
from sqlalchemy import Column, Text, DateTime, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database.models.base import Base, TextArray

class PoolConfig(Base):
    __tablename__ = 'config'

    # uuid is created in the application; stat and enriched rows reuse it as their key
    config_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    pool = Column(Text, nullable=False, unique=True)
    project = Column(Text, nullable=False)
    chain = Column(Text, nullable=False)
    symbol = Column(Text, nullable=False)
    pool_meta = Column("poolMeta", Text)
    underlying_tokens = Column("underlyingTokens", TextArray)
    reward_tokens = Column("rewardTokens", TextArray)
    url = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    yields = relationship("YieldObservation", back_populates="config")
    stat = relationship("PoolStat", back_populates="config", uselist=False)
    enriched = relationship("EnrichedPool", back_populates="config", uselist=False)

    __mapper_args__ = {"eager_defaults": True}
