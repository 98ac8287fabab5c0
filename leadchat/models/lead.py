"""
Lead model — one row per chat session, keyed by session_id.

Written only by the primary sink; a later write for the same session replaces
every column.
"""
from sqlalchemy import Column, Integer, Text, Boolean, DateTime
from sqlalchemy.sql import func

from leadchat.database import Base


class Lead(Base):
    __tablename__ = 'leads'

    session_id = Column(Text, primary_key=True)
    name = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    budget = Column(Integer, nullable=True)          # currency-free
    heat_score = Column(Integer, nullable=False, default=0, index=True)  # 0-100
    summary = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=True, index=True)
    area = Column(Text, nullable=True)
    location = Column(Text, nullable=True)
    compound = Column(Text, nullable=True)
    unit_type = Column(Text, nullable=True)
    call_requested = Column(Boolean, nullable=False, default=False)
    best_call_time = Column(Text, nullable=True)
    tonality = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
