from sqlalchemy import Column, Integer, String, DateTime
from db.base import Base
from datetime import datetime


class Settings(Base):
    """Runtime configuration overrides; environment variables take precedence."""

    __tablename__ = "settings"
    id = Column(Integer, primary_key=True)
    key = Column(String, unique=True, nullable=False, index=True)
    value = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
