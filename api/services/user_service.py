from db.models.user import User, PLAN_FREE
from db.repositories.user_repository import UserRepository
from db.repositories.settings_repository import SettingsRepository
from dataclasses import dataclass
from typing import Optional
import json
import jwt
import logging
from fastapi import Request

logger = logging.getLogger(__name__)

PRIVY_ISSUER = "privy.io"


class UserServiceException(Exception):
    def __init__(self, detail):
        super().__init__(detail)
        self.detail = detail

    def __str__(self):
        return str(self.detail)


@dataclass
class AuthClaims:
    privy_user_id: str
    wallet_address: Optional[str]


def _wallet_from_claims(payload: dict) -> Optional[str]:
    wallet = payload.get("wallet")
    if isinstance(wallet, dict) and wallet.get("address"):
        return wallet["address"]

    linked_accounts = payload.get("linked_accounts")
    if isinstance(linked_accounts, str):
        try:
            linked_accounts = json.loads(linked_accounts)
        except ValueError:
            linked_accounts = None
    for account in linked_accounts or []:
        if not isinstance(account, dict):
            continue
        if account.get("type") == "wallet" and account.get("address"):
            return account["address"]
    return None


class PrivyTokenVerifier:
    """Verifies Privy-issued access/identity tokens with the app's verification key."""

    def __init__(self, settings_repo: Optional[SettingsRepository] = None):
        self.settings_repo = settings_repo

    def _get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.settings_repo:
            return self.settings_repo.get_setting(key, default)
        return default

    def verify(self, token: str) -> AuthClaims:
        verification_key = self._get_setting("PRIVY_VERIFICATION_KEY")
        if not verification_key:
            logger.error("PRIVY_VERIFICATION_KEY is not configured")
            raise UserServiceException("Authentication is not configured")
        # Keys pasted into env vars often carry literal \n sequences
        verification_key = verification_key.replace("\\n", "\n")
        algorithm = self._get_setting("PRIVY_JWT_ALGORITHM", "ES256")
        app_id = self._get_setting("PRIVY_APP_ID")

        try:
            payload = jwt.decode(
                token,
                verification_key,
                algorithms=[algorithm],
                audience=app_id if app_id else None,
                issuer=PRIVY_ISSUER,
                options={"verify_aud": bool(app_id)},
            )
        except jwt.ExpiredSignatureError:
            logger.error("Token has expired")
            raise UserServiceException("Token expired")
        except jwt.PyJWTError as e:
            logger.error(f"JWT decode error: {str(e)}")
            raise UserServiceException("Invalid or expired token")

        privy_user_id = payload.get("sub")
        if not privy_user_id:
            logger.error("No sub in token payload")
            raise UserServiceException("Invalid token claims")
        return AuthClaims(privy_user_id=privy_user_id, wallet_address=_wallet_from_claims(payload))


class UserService:
    def __init__(self, user_repo: UserRepository, token_verifier: PrivyTokenVerifier):
        self.user_repo = user_repo
        self.token_verifier = token_verifier

    def get_or_create(self, claims: AuthClaims) -> User:
        """Find the user by wallet or provider id, creating a free-plan user on first sight."""
        user = self.user_repo.get_user_by_wallet_or_privy_id(
            claims.wallet_address, claims.privy_user_id
        )
        if user is None:
            if not claims.wallet_address:
                logger.error(f"No wallet address linked to Privy user {claims.privy_user_id}")
                raise UserServiceException("No wallet address linked to Privy user")
            user = self.user_repo.create_user(
                User(
                    wallet_address=claims.wallet_address,
                    privy_user_id=claims.privy_user_id,
                    plan=PLAN_FREE,
                )
            )
            logger.info(f"Created new user with wallet: {claims.wallet_address}")
            return user

        updates = {}
        if not user.wallet_address and claims.wallet_address:
            updates["wallet_address"] = claims.wallet_address
        if not user.privy_user_id and claims.privy_user_id:
            updates["privy_user_id"] = claims.privy_user_id
        if updates:
            user = self.user_repo.update_user(user.id, updates)
            logger.info(f"Updated user {user.id} with {', '.join(updates)}")
        return user

    def get_current_user(self, token: str) -> User:
        claims = self.token_verifier.verify(token)
        return self.get_or_create(claims)

    async def get_current_user_from_request(self, request: Request) -> User:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise UserServiceException("Missing or invalid authorization header")
        token = auth_header[len("Bearer "):].strip()
        return self.get_current_user(token)
