# FILE: pharmstock/models/number_series.py
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from pharmstock.db.base import Base


class InvNumberSeries(Base):
    __tablename__ = "pharm_number_series"
    __table_args__ = (
        UniqueConstraint("key", "date_key", name="uq_pharm_number_series_key_date"),
    )

    id = Column(Integer, primary_key=True)
    key = Column(String(30), nullable=False)         # PR etc.
    date_key = Column(Integer, nullable=False)      # YYYYMMDD
    next_seq = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
