from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from db.models.subscription import (
    Subscription,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_PENDING_PAYMENT,
)
from datetime import datetime


class SubscriptionRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, subscription: Subscription) -> Subscription:
        self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def get_by_id(self, subscription_id: int, user_id: int | None = None) -> Subscription | None:
        query = self.db.query(Subscription).filter(Subscription.id == subscription_id)
        if user_id is not None:
            query = query.filter(Subscription.user_id == user_id)
        return query.first()

    def get_current(self, user_id: int) -> Subscription | None:
        """Latest active or pending subscription for a user"""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status.in_([SUBSCRIPTION_ACTIVE, SUBSCRIPTION_PENDING_PAYMENT]),
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    def get_active(self, user_id: int) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.status == SUBSCRIPTION_ACTIVE)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )

    def get_by_tx_hash(self, tx_hash: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.payment_tx_hash.ilike(tx_hash))
            .first()
        )

    def transition(
        self, subscription_id: int, expected_status: str, new_status: str, **fields
    ) -> bool:
        """Compare-and-swap on status; returns False if the status moved underneath us.

        Also returns False when the update would reuse a payment_tx_hash already
        recorded on another subscription.
        """
        values = {
            Subscription.status: new_status,
            Subscription.version: Subscription.version + 1,
            Subscription.updated_at: datetime.utcnow(),
        }
        for key, value in fields.items():
            values[getattr(Subscription, key)] = value
        try:
            updated = (
                self.db.query(Subscription)
                .filter(Subscription.id == subscription_id, Subscription.status == expected_status)
                .update(values, synchronize_session=False)
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return updated == 1

    def cancel_other_active(self, user_id: int, keep_subscription_id: int) -> int:
        updated = (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == user_id,
                Subscription.id != keep_subscription_id,
                Subscription.status == SUBSCRIPTION_ACTIVE,
            )
            .update(
                {
                    Subscription.status: SUBSCRIPTION_CANCELLED,
                    Subscription.version: Subscription.version + 1,
                    Subscription.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated

    def list_lapsed(self, now: datetime) -> list[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.status == SUBSCRIPTION_ACTIVE,
                Subscription.end_date.isnot(None),
                Subscription.end_date < now,
            )
            .all()
        )

    def refresh(self, subscription: Subscription) -> Subscription:
        self.db.refresh(subscription)
        return subscription
