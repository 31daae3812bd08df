from sqlalchemy import Column, Integer, String, DateTime
from db.base import Base
from datetime import datetime

# Plan constants
PLAN_FREE = "free"
PLAN_STANDARD = "standard"
PLAN_PREMIUM = "premium"
PLANS = (PLAN_FREE, PLAN_STANDARD, PLAN_PREMIUM)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    wallet_address = Column(String, unique=True, nullable=False, index=True)
    privy_user_id = Column(String, unique=True, nullable=False, index=True)
    plan = Column(String, nullable=False, default=PLAN_FREE)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
