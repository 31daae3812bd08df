from sqlalchemy import or_
from sqlalchemy.orm import Session
from db.models.user import User


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def create_user(self, user: User) -> User:
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user

    def get_user_by_id(self, user_id: int) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_user_by_wallet(self, wallet_address: str) -> User | None:
        return (
            self.db.query(User)
            .filter(User.wallet_address.ilike(wallet_address))
            .first()
        )

    def get_user_by_wallet_or_privy_id(
        self, wallet_address: str | None, privy_user_id: str | None
    ) -> User | None:
        clauses = []
        if wallet_address:
            clauses.append(User.wallet_address.ilike(wallet_address))
        if privy_user_id:
            clauses.append(User.privy_user_id == privy_user_id)
        if not clauses:
            return None
        return self.db.query(User).filter(or_(*clauses)).first()

    def update_user(self, user_id: int, update_data: dict) -> User | None:
        """Update user with dict of fields"""
        existing_user = self.get_user_by_id(user_id)
        if not existing_user:
            return None
        for key, value in update_data.items():
            if hasattr(existing_user, key):
                setattr(existing_user, key, value)
        self.db.commit()
        self.db.refresh(existing_user)
        return existing_user

    def set_plan(self, user_id: int, plan: str) -> User | None:
        return self.update_user(user_id, {"plan": plan})
