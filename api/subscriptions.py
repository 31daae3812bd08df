from fastapi import APIRouter, Depends, HTTPException
from api.dependencies import get_subscription_service, get_current_user
from api.models import (
    PaymentIntentRequest,
    PaymentIntentResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from api.services.subscription_service import SubscriptionService, SubscriptionServiceException
from db.models.user import User

router = APIRouter()


@router.get("/subscriptions", response_model=SubscriptionStatusResponse)
def get_subscription(
    current_user: User = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = subscription_service.get_current(current_user)
    return SubscriptionStatusResponse(
        plan=current_user.plan,
        subscription=SubscriptionResponse.model_validate(subscription) if subscription else None,
    )


@router.post("/subscriptions/payment-intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    body: PaymentIntentRequest,
    current_user: User = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        return subscription_service.create_payment_intent(current_user, body.plan)
    except SubscriptionServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/subscriptions/verify-payment", response_model=VerifyPaymentResponse)
def verify_payment(
    body: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        verification, subscription = subscription_service.verify_payment(
            current_user, body.subscription_id, body.tx_hash
        )
    except SubscriptionServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return VerifyPaymentResponse(
        confirmed=verification["confirmed"],
        amount=verification["amount"],
        subscription=SubscriptionResponse.model_validate(subscription),
    )


@router.post("/subscriptions/cancel")
def cancel_subscription(
    current_user: User = Depends(get_current_user),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        subscription_service.cancel(current_user)
    except SubscriptionServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"message": "Subscription cancelled successfully"}
