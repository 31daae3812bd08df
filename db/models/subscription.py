from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from db.base import Base
from datetime import datetime

# Subscription status constants
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CANCELLED = "cancelled"
SUBSCRIPTION_EXPIRED = "expired"
SUBSCRIPTION_PENDING_PAYMENT = "pending_payment"


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SUBSCRIPTION_PENDING_PAYMENT, index=True)
    payment_amount = Column(String, nullable=True)  # Human USDC amount, e.g. "19.00"
    payment_currency = Column(String, default="USDC")
    payment_network = Column(String, default="base-sepolia")
    payment_tx_hash = Column(String, nullable=True, unique=True, index=True)  # Stored lowercased
    start_date = Column(DateTime, default=datetime.utcnow)
    end_date = Column(DateTime, nullable=True)
    auto_renew = Column(Boolean, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
