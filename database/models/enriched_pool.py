from sqlalchemy import Column, Boolean, Integer, SmallInteger, Numeric, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database.models.base import Base, JsonDocument

class EnrichedPool(Base):
    __tablename__ = 'enriched'

    # Identical to config.config_id (1:1)
    enriched_id = Column(Uuid, ForeignKey('config.config_id'), primary_key=True)
    apy_pct_1d = Column("apyPct1D", Numeric(asdecimal=False))
    apy_pct_7d = Column("apyPct7D", Numeric(asdecimal=False))
    apy_pct_30d = Column("apyPct30D", Numeric(asdecimal=False))
    stablecoin = Column(Boolean, nullable=False)
    il_risk = Column("ilRisk", Text, nullable=False)
    exposure = Column(Text, nullable=False)
    predictions = Column(JsonDocument, nullable=False)
    mu = Column(Numeric(asdecimal=False), nullable=False)
    sigma = Column(Numeric(asdecimal=False), nullable=False)
    count = Column(Integer, nullable=False)
    outlier = Column(Boolean, nullable=False)
    daily_return = Column("return", Numeric(asdecimal=False), nullable=False)
    apy_mean_expanding = Column("apyMeanExpanding", Numeric(asdecimal=False), nullable=False)
    apy_std_expanding = Column("apyStdExpanding", Numeric(asdecimal=False), nullable=False)
    chain_factorized = Column(SmallInteger, nullable=False)
    project_factorized = Column(SmallInteger, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    config = relationship("PoolConfig", back_populates="enriched")

    __mapper_args__ = {"eager_defaults": True}
