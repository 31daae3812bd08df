import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from db.base import Base
from db.models.user import User
from db.models.subscription import (
    Subscription,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_PENDING_PAYMENT,
)
from db.repositories.subscription_repository import SubscriptionRepository


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    sess = Session()
    yield sess
    sess.close()


@pytest.fixture
def user(session) -> User:
    user = User(wallet_address="0x" + "1" * 40, privy_user_id="did:privy:1")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def repo(session) -> SubscriptionRepository:
    return SubscriptionRepository(session)


def test_transition_is_conditional_on_status(repo, user):
    sub = repo.create(Subscription(user_id=user.id, plan="standard"))
    assert sub.status == SUBSCRIPTION_PENDING_PAYMENT
    assert repo.transition(sub.id, SUBSCRIPTION_PENDING_PAYMENT, SUBSCRIPTION_ACTIVE, payment_tx_hash="0xabc")
    assert repo.transition(sub.id, SUBSCRIPTION_PENDING_PAYMENT, SUBSCRIPTION_ACTIVE) is False
    sub = repo.refresh(sub)
    assert sub.status == SUBSCRIPTION_ACTIVE
    assert sub.version == 2


def test_cancel_other_active_keeps_one(repo, user):
    old = repo.create(Subscription(user_id=user.id, plan="standard", status=SUBSCRIPTION_ACTIVE))
    new = repo.create(Subscription(user_id=user.id, plan="premium", status=SUBSCRIPTION_ACTIVE))
    assert repo.cancel_other_active(user.id, new.id) == 1
    assert repo.refresh(old).status == SUBSCRIPTION_CANCELLED
    assert repo.refresh(new).status == SUBSCRIPTION_ACTIVE


def test_get_by_tx_hash_case_insensitive(repo, user):
    repo.create(Subscription(user_id=user.id, plan="standard", payment_tx_hash="0xABCDEF"))
    assert repo.get_by_tx_hash("0xabcdef") is not None
    assert repo.get_by_tx_hash("0x123") is None


def test_list_lapsed_only_returns_expired_active(repo, user):
    now = datetime.utcnow()
    lapsed = repo.create(
        Subscription(user_id=user.id, plan="standard", status=SUBSCRIPTION_ACTIVE, end_date=now - timedelta(days=1))
    )
    repo.create(
        Subscription(user_id=user.id, plan="premium", status=SUBSCRIPTION_ACTIVE, end_date=now + timedelta(days=1))
    )
    repo.create(
        Subscription(user_id=user.id, plan="standard", status=SUBSCRIPTION_CANCELLED, end_date=now - timedelta(days=1))
    )
    assert [s.id for s in repo.list_lapsed(now)] == [lapsed.id]


def test_transition_rejects_reused_tx_hash(repo, user):
    first = repo.create(Subscription(user_id=user.id, plan="standard"))
    second = repo.create(Subscription(user_id=user.id, plan="standard"))
    assert repo.transition(first.id, SUBSCRIPTION_PENDING_PAYMENT, SUBSCRIPTION_ACTIVE, payment_tx_hash="0xabc")

    assert repo.transition(second.id, SUBSCRIPTION_PENDING_PAYMENT, SUBSCRIPTION_ACTIVE, payment_tx_hash="0xabc") is False

    second = repo.refresh(second)
    assert second.status == SUBSCRIPTION_PENDING_PAYMENT
    assert second.payment_tx_hash is None
    assert second.version == 1
