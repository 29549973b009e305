"""
Authentication Endpoints.

Session-based identity for the web client. The identity-provider routes
(``/api/login``, ``/api/callback``, ``/api/auth/google`` ...) belong to the
active `AuthStrategy` and are mounted through `build_strategy_router`; the
routes here work the same under every strategy.

Endpoints Provided:
- `GET /api/auth/user`: The logged-in user, 401 when anonymous.
- `POST /api/auth/email/send-otp`: Accepts an email address for a one-time
  code. No code is actually delivered yet.
- `POST /api/auth/email/verify-otp`: Logs the email in, creating the user on
  first use. Any code is accepted (see `OTP_PLACEHOLDER_WARNING`).
- `POST /api/auth/email/logout`: Clears the session.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, EmailStr, Field

from core.auth import OTP_PLACEHOLDER_WARNING, AuthStrategy
from core.exceptions import AuthenticationError
from core.logging_config import get_logger, log_function_call
from core.models import UserCreate, UserRead
from repository.base import ContentRepository

from .dependencies import get_optional_user_id, get_repository

logger = get_logger("api.auth")
router = APIRouter(prefix="/api/auth", tags=["Authentication"])


class SendOtpRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=1)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginResponse(BaseModel):
    message: str
    user: UserRead
    otp_verified: bool = False


def build_strategy_router(auth: AuthStrategy) -> APIRouter:
    """Router carrying the active strategy's login, callback and logout routes"""
    strategy_router = APIRouter(prefix="/api", tags=["Authentication"])
    auth.register_routes(strategy_router)
    return strategy_router


@router.get("/user", response_model=UserRead)
@log_function_call(logger)
async def get_auth_user(
    user_id: Optional[str] = Depends(get_optional_user_id),
    repository: ContentRepository = Depends(get_repository),
):
    user = await repository.get_user(user_id) if user_id else None
    if user is None:
        raise AuthenticationError("Unauthorized")
    return user


@router.post("/email/send-otp")
@log_function_call(logger)
async def send_otp(payload: SendOtpRequest):
    # TODO: deliver the code through an email provider once one is configured
    logger.info("OTP requested", extra={"email_domain": payload.email.split("@")[-1]})
    return {"message": "OTP sent successfully", "email": payload.email}


@router.post("/email/verify-otp", response_model=LoginResponse)
@log_function_call(logger)
async def verify_otp(
    payload: VerifyOtpRequest,
    request: Request,
    repository: ContentRepository = Depends(get_repository),
):
    logger.warning(OTP_PLACEHOLDER_WARNING)

    user = await repository.get_user_by_email(payload.email)
    if user is None:
        user = await repository.create_user(
            UserCreate(
                email=payload.email,
                first_name=payload.first_name,
                last_name=payload.last_name,
                auth_provider="email",
                is_verified=True,
            )
        )
        logger.info(f"Created email user {user.id}")

    request.session["user_id"] = user.id
    return LoginResponse(message="Login successful", user=UserRead.model_validate(user))


@router.post("/email/logout")
async def email_logout(request: Request):
    if not request.session:
        return {"message": "Already logged out"}
    request.session.clear()
    return {"message": "Logged out successfully"}
