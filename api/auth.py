from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from api.models import UserResponse
from api.dependencies import get_current_user
from db.models.user import User

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


@router.post("/auth/login", response_model=UserResponse)
@limiter.limit("30/minute")
def login(
    request: Request,
    current_user: User = Depends(get_current_user),
):
    """Exchange a Privy token for the local user record, creating it on first login."""
    return current_user


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user
