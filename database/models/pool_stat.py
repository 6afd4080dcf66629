from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database.models.base import Base

class PoolStat(Base):
    __tablename__ = 'stat'

    # Identical to config.config_id (1:1)
    stat_id = Column(Uuid, ForeignKey('config.config_id'), primary_key=True)
    count = Column(Integer, nullable=False)
    mean_apy = Column("meanAPY", Numeric(asdecimal=False), nullable=False)
    mean2_apy = Column("mean2APY", Numeric(asdecimal=False))
    mean_dr = Column("meanDR", Numeric(asdecimal=False), nullable=False)
    mean2_dr = Column("mean2DR", Numeric(asdecimal=False))
    product_dr = Column("productDR", Numeric(asdecimal=False), nullable=False)
    # Number of periods folded into the daily-return moments, can lag count when returns were skipped
    count_dr = Column("countDR", Integer)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    config = relationship("PoolConfig", back_populates="stat")

    __mapper_args__ = {"eager_defaults": True}
