from db.models.subscription import (
    Subscription,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_EXPIRED,
    SUBSCRIPTION_PENDING_PAYMENT,
)
from db.models.user import User, PLAN_FREE, PLAN_STANDARD, PLAN_PREMIUM
from db.repositories.subscription_repository import SubscriptionRepository
from db.repositories.user_repository import UserRepository
from api.services.payment_service import PaymentVerifier, get_plan_price
from dateutil.relativedelta import relativedelta
from datetime import datetime
from typing import Optional
import logging

logger = logging.getLogger(__name__)

PAID_PLANS = (PLAN_STANDARD, PLAN_PREMIUM)
SUBSCRIPTION_PERIOD = relativedelta(months=1)


class SubscriptionServiceException(Exception):
    def __init__(self, detail, status_code: int = 400):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code

    def __str__(self):
        return str(self.detail)


class SubscriptionService:
    def __init__(
        self,
        subscription_repo: SubscriptionRepository,
        user_repo: UserRepository,
        payment_verifier: PaymentVerifier,
    ):
        self.subscription_repo = subscription_repo
        self.user_repo = user_repo
        self.payment_verifier = payment_verifier

    def get_current(self, user: User) -> Optional[Subscription]:
        return self.subscription_repo.get_current(user.id)

    def create_payment_intent(self, user: User, plan: str) -> dict:
        if plan not in PAID_PLANS:
            raise SubscriptionServiceException("Invalid plan")

        amount = get_plan_price(plan)
        subscription = self.subscription_repo.create(
            Subscription(
                user_id=user.id,
                plan=plan,
                status=SUBSCRIPTION_PENDING_PAYMENT,
                payment_amount=amount,
                payment_currency="USDC",
                payment_network=self.payment_verifier.network,
                start_date=datetime.utcnow(),
                auto_renew=True,
            )
        )
        logger.info(f"Created payment intent {subscription.id} for user {user.id}: {plan} ({amount} USDC)")
        return {
            "subscriptionId": subscription.id,
            "amount": amount,
            "currency": "USDC",
            "network": subscription.payment_network,
            "recipientAddress": self.payment_verifier.recipient_address,
        }

    def verify_payment(self, user: User, subscription_id: int, tx_hash: str) -> tuple[dict, Subscription]:
        """
        Check the on-chain payment for a pending subscription and activate it.

        Returns the verifier's result and the (possibly updated) subscription.
        """
        if not tx_hash:
            raise SubscriptionServiceException("Transaction hash is required")

        subscription = self.subscription_repo.get_by_id(subscription_id, user_id=user.id)
        if not subscription:
            raise SubscriptionServiceException("Subscription not found", status_code=404)

        used_by = self.subscription_repo.get_by_tx_hash(tx_hash)
        if used_by and used_by.id != subscription.id:
            logger.warning(f"Transaction {tx_hash} already used for subscription {used_by.id}")
            raise SubscriptionServiceException(
                "Transaction has already been used for another subscription", status_code=409
            )

        if subscription.status != SUBSCRIPTION_PENDING_PAYMENT:
            raise SubscriptionServiceException(
                f"Subscription is {subscription.status}, not awaiting payment", status_code=409
            )

        expected_amount = subscription.payment_amount or get_plan_price(subscription.plan)
        verification = self.payment_verifier.verify(tx_hash, expected_amount, user.wallet_address)

        if not verification.confirmed:
            logger.warning(f"Payment verification failed for subscription {subscription.id} (tx: {tx_hash})")
            return verification.to_dict(), subscription

        now = datetime.utcnow()
        activated = self.subscription_repo.transition(
            subscription.id,
            SUBSCRIPTION_PENDING_PAYMENT,
            SUBSCRIPTION_ACTIVE,
            payment_tx_hash=tx_hash.lower(),
            start_date=now,
            end_date=now + SUBSCRIPTION_PERIOD,
        )
        if not activated:
            raise SubscriptionServiceException("Subscription was updated concurrently", status_code=409)

        self.user_repo.set_plan(user.id, subscription.plan)
        cancelled = self.subscription_repo.cancel_other_active(user.id, subscription.id)
        logger.info(
            f"Subscription activated for user {user.wallet_address}: {subscription.plan} "
            f"(tx: {tx_hash}, superseded: {cancelled})"
        )
        return verification.to_dict(), self.subscription_repo.refresh(subscription)

    def cancel(self, user: User) -> Subscription:
        subscription = self.subscription_repo.get_active(user.id)
        if not subscription:
            raise SubscriptionServiceException("No active subscription found", status_code=404)

        if not self.subscription_repo.transition(
            subscription.id, SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELLED, auto_renew=False
        ):
            raise SubscriptionServiceException("Subscription was updated concurrently", status_code=409)
        self.user_repo.set_plan(user.id, PLAN_FREE)
        logger.info(f"Subscription {subscription.id} cancelled; user {user.id} downgraded to free")
        return self.subscription_repo.refresh(subscription)

    def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        expired = 0
        for subscription in self.subscription_repo.list_lapsed(now):
            if not self.subscription_repo.transition(
                subscription.id, SUBSCRIPTION_ACTIVE, SUBSCRIPTION_EXPIRED
            ):
                continue
            expired += 1
            # A newer active subscription keeps the user's plan
            if self.subscription_repo.get_active(subscription.user_id) is None:
                self.user_repo.set_plan(subscription.user_id, PLAN_FREE)
            logger.info(f"Subscription {subscription.id} expired for user {subscription.user_id}")
        return expired
