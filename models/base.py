from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

from utils.clock import utcnow

Base = declarative_base()


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
