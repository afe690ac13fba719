"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, Request, Response

from app.dependencies import (
    SETUP_SESSION_COOKIE,
    clear_setup_session_cookie,
    get_auth_service,
    get_credential_store,
    get_current_user,
    get_optional_user,
    get_pending_store,
    get_two_factor_service,
    new_setup_session_id,
    set_setup_session_cookie,
)
from app.errors import ValidationError
from app.models.user import UserRecord
from app.rate_limit import api_limit, limiter, login_limit, password_reset_limit, register_limit
from app.schemas.auth import (
    ApiResponse,
    AuthData,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
    ProfileData,
    RegisterRequest,
    ResetPasswordRequest,
    SessionData,
    TwoFactorDisableRequest,
    TwoFactorSetupResponse,
    TwoFactorVerifyRequest,
    UserResponse,
)
from app.services.auth import AuthService
from app.services.credential_store import CredentialStore
from app.services.jwt import JWTService, get_jwt_service
from app.services.password import validate_strength
from app.services.two_factor import PendingSecretStore, TwoFactorService

logger = logging.getLogger("mindmaps")

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def _auth_data(user: UserRecord, jwt_service: JWTService) -> AuthData:
    return AuthData(user=UserResponse.model_validate(user), token=jwt_service.create_token(user.id, user.storage))


@router.post("/register", response_model=ApiResponse[AuthData], status_code=201, response_model_exclude_none=True)
@limiter.limit(register_limit)
def register(
    request: Request,
    body: RegisterRequest,
    store: CredentialStore = Depends(get_credential_store),
    auth_service: AuthService = Depends(get_auth_service),
    jwt_service: JWTService = Depends(get_jwt_service),
) -> ApiResponse[AuthData]:
    """Register a new user account."""
    logger.info("Registration attempt for username=%s", body.username)
    user = auth_service.register(store, body.username, body.email, body.password)
    return ApiResponse(message="User registered successfully", data=_auth_data(user, jwt_service))


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
@limiter.limit(login_limit)
def login(
    request: Request,
    body: LoginRequest,
    store: CredentialStore = Depends(get_credential_store),
    auth_service: AuthService = Depends(get_auth_service),
    jwt_service: JWTService = Depends(get_jwt_service),
) -> LoginResponse:
    """Authenticate and receive a JWT token, or a prompt for the second factor."""
    result = auth_service.authenticate(store, body.username, body.password, body.two_factor_code)

    if result.requires_two_factor:
        return LoginResponse(
            message="Two-factor authentication required",
            requires_two_factor=True,
            user_id=result.user.id,
        )

    return LoginResponse(message="Login successful", data=_auth_data(result.user, jwt_service))


@router.post(
    "/check-password-strength",
    response_model=ApiResponse[PasswordStrengthResponse],
    response_model_exclude_none=True,
)
@limiter.limit(api_limit)
def check_password_strength(request: Request, body: PasswordStrengthRequest) -> ApiResponse[PasswordStrengthResponse]:
    """Score a password without storing anything."""
    if not body.password:
        raise ValidationError("Password is required")
    return ApiResponse(data=PasswordStrengthResponse.model_validate(validate_strength(body.password)))


@router.get("/profile", response_model=ApiResponse[ProfileData], response_model_exclude_none=True)
@limiter.limit(api_limit)
def profile(request: Request, user: UserRecord = Depends(get_current_user)) -> ApiResponse[ProfileData]:
    """Return the authenticated user."""
    return ApiResponse(data=ProfileData(user=UserResponse.model_validate(user)))


@router.get("/session", response_model=ApiResponse[SessionData], response_model_exclude_none=True)
@limiter.limit(api_limit)
def session(request: Request, user: UserRecord | None = Depends(get_optional_user)) -> ApiResponse[SessionData]:
    """Report whether the caller holds a usable session. Never fails on bad tokens."""
    if user is None:
        return ApiResponse(data=SessionData(authenticated=False))
    return ApiResponse(data=SessionData(authenticated=True, user=UserResponse.model_validate(user)))


@router.post("/2fa/setup", response_model=ApiResponse[TwoFactorSetupResponse], response_model_exclude_none=True)
@limiter.limit(api_limit)
def setup_two_factor(
    request: Request,
    response: Response,
    user: UserRecord = Depends(get_current_user),
    two_factor: TwoFactorService = Depends(get_two_factor_service),
) -> ApiResponse[TwoFactorSetupResponse]:
    """Start 2FA enrollment. The secret is held server-side until verified."""
    session_id = request.cookies.get(SETUP_SESSION_COOKIE) or new_setup_session_id()
    setup = two_factor.begin_setup(user, session_id)
    set_setup_session_cookie(response, session_id)
    return ApiResponse(
        data=TwoFactorSetupResponse(secret=setup.secret, qr_code=setup.qr_code, manual_entry_key=setup.secret)
    )


@router.post("/2fa/verify", response_model=ApiResponse[None], response_model_exclude_none=True)
@limiter.limit(api_limit)
def verify_two_factor(
    request: Request,
    response: Response,
    body: TwoFactorVerifyRequest,
    user: UserRecord = Depends(get_current_user),
    store: CredentialStore = Depends(get_credential_store),
    two_factor: TwoFactorService = Depends(get_two_factor_service),
) -> ApiResponse[None]:
    """Confirm the pending secret with a code from the authenticator app."""
    if not body.code:
        raise ValidationError("Verification code is required")
    two_factor.confirm_setup(store, user, request.cookies.get(SETUP_SESSION_COOKIE), body.code)
    clear_setup_session_cookie(response)
    return ApiResponse(message="Two-factor authentication enabled successfully")


@router.post("/2fa/disable", response_model=ApiResponse[None], response_model_exclude_none=True)
@limiter.limit(api_limit)
def disable_two_factor(
    request: Request,
    body: TwoFactorDisableRequest,
    user: UserRecord = Depends(get_current_user),
    store: CredentialStore = Depends(get_credential_store),
    two_factor: TwoFactorService = Depends(get_two_factor_service),
) -> ApiResponse[None]:
    """Turn 2FA off. Requires the current password."""
    if not body.password:
        raise ValidationError("Password is required to disable two-factor authentication")
    two_factor.disable(store, user, body.password)
    return ApiResponse(message="Two-factor authentication disabled successfully")


@router.post("/forgot-password", response_model=ApiResponse[None], response_model_exclude_none=True)
@limiter.limit(password_reset_limit)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    store: CredentialStore = Depends(get_credential_store),
    auth_service: AuthService = Depends(get_auth_service),
) -> ApiResponse[None]:
    """Request a password reset. Logs reset link to server console."""
    token = auth_service.request_password_reset(store, body.email)

    if token:
        base_url = str(request.base_url).rstrip("/")
        logger.info("PASSWORD RESET: %s/reset-password?token=%s", base_url, token)

    return ApiResponse(
        message="If an account exists with that email, a reset link has been generated. Check the server console."
    )


@router.post("/reset-password", response_model=ApiResponse[AuthData], response_model_exclude_none=True)
@limiter.limit(password_reset_limit)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    store: CredentialStore = Depends(get_credential_store),
    auth_service: AuthService = Depends(get_auth_service),
    jwt_service: JWTService = Depends(get_jwt_service),
) -> ApiResponse[AuthData]:
    """Reset password using a valid token. Returns JWT for auto-login."""
    user = auth_service.reset_password(store, body.token, body.new_password)
    return ApiResponse(message="Password has been reset", data=_auth_data(user, jwt_service))


@router.post("/logout", response_model=ApiResponse[None], response_model_exclude_none=True)
@limiter.limit(api_limit)
def logout(
    request: Request,
    response: Response,
    user: UserRecord = Depends(get_current_user),
    pending: PendingSecretStore = Depends(get_pending_store),
) -> ApiResponse[None]:
    """Tokens are stateless; the client discards its copy. Any unfinished 2FA setup is dropped."""
    session_id = request.cookies.get(SETUP_SESSION_COOKIE)
    if session_id:
        pending.discard(session_id)
        clear_setup_session_cookie(response)
    logger.info("User %s logged out", user.id)
    return ApiResponse(message="Logged out successfully")
