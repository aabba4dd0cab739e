from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ....core.database import get_session
from ....core.security import user_is_admin
from ....repositories.user_repository import UserRepository
from ....schemas.auth import LoginRequest, TokenResponse
from ....services.auth_service import AuthService


router = APIRouter()


@router.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest, session: Session = Depends(get_session)) -> TokenResponse:
    service = AuthService(UserRepository(session))
    user, token = service.authenticate(username=payload.username, password=payload.password)
    return TokenResponse(
        access_token=token,
        token_type="bearer",
        username=user.username,
        is_admin=user_is_admin(user),
    )
