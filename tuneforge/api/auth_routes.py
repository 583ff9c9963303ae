"""Authentication endpoints.

    POST /api/auth/register  -- create account (open for the first user, admin-only after)
    POST /api/auth/login     -- authenticate and receive a JWT
    GET  /api/auth/me        -- profile, usage counters and remaining allowance
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, optional_auth, require_auth
from ..core.config import settings
from ..core.token_factory import create_token
from ..database import get_db
from ..exceptions import AuthenticationError, ForbiddenError
from ..models.user import User
from ..schemas.user import LoginRequest, LoginResponse, MeResponse, RegisterRequest, UserResponse
from ..services import auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=201,
    summary="Register a new user",
    description="First registration is open (creates admin). After that, admin auth required.",
)
def register_user(
    body: RegisterRequest,
    db: Session = Depends(get_db),
    auth: Optional[AuthContext] = Depends(optional_auth),
):
    real_user_count = db.query(User).filter(User.email.isnot(None)).count()
    if real_user_count > 0 and (auth is None or not auth.is_admin):
        raise ForbiddenError("Only admins can register new users")

    return auth_service.register_user(db, body.email, body.password, body.display_name)


@router.post("/login", response_model=LoginResponse, summary="Authenticate and receive JWT")
def login(body: LoginRequest, db: Session = Depends(get_db)):
    user = auth_service.authenticate(db, body.email, body.password)
    token = create_token(
        subject=user.user_id,
        role=user.role,
        secret=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return LoginResponse(token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=MeResponse, summary="Current user, usage and allowance")
def get_me(auth: AuthContext = Depends(require_auth), db: Session = Depends(get_db)):
    user = auth_service.get_user_by_id(db, auth.user_id)
    if user is None:
        raise AuthenticationError("User not found")
    return MeResponse(
        user=UserResponse.model_validate(user),
        can_create_songs=auth_service.can_create_songs(user, user.role),
        remaining_songs=auth_service.remaining_songs(user, user.role),
    )
