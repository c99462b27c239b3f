"""User endpoints.

Endpoints:
    POST /api/v1/users/                - Create a user record
    GET  /api/v1/users/current-user    - The authenticated caller
    POST /api/v1/users/token/{user_id} - Issue an access token (dev only)

There are no passwords here. Issuing tokens for arbitrary users is only
enabled when ``auth.allow_dev_tokens`` is set.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from app.api.deps import get_app_config, get_current_identity, get_user_store, get_verifier
from app.api.responses import api_response
from app.auth.tokens import Identity, TokenVerifier
from app.config import AppConfig

from .schemas import UserCreate
from .store import UserExistsError, UserStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.post("/")
async def create_user(
    body: UserCreate,
    users: UserStore = Depends(get_user_store),
) -> JSONResponse:
    """Create a user record.

    Returns:
        The created user (201), or 409 if the username is taken.
    """
    try:
        user = users.create(body)
    except UserExistsError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return api_response(201, user, "User registered successfully")


@router.get("/current-user")
async def current_user(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    return api_response(200, identity.user, "Current user fetched successfully")


@router.post("/token/{user_id}")
async def issue_token(
    user_id: str,
    config: AppConfig = Depends(get_app_config),
    users: UserStore = Depends(get_user_store),
    verifier: TokenVerifier = Depends(get_verifier),
) -> JSONResponse:
    """Issue an access token for ``user_id`` and set it as a cookie.

    Args:
        user_id: The user to sign in as.

    Returns:
        ``{"user", "accessToken"}``; 403 when dev tokens are disabled,
        404 for an unknown user.
    """
    if not config.auth.allow_dev_tokens:
        raise HTTPException(status_code=403, detail="Token issuing is disabled")

    user = users.get(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User does not exist")

    token = verifier.issue_access_token(user.id)
    response = api_response(200, {"user": user, "accessToken": token}, "Token issued")
    response.set_cookie(
        key=verifier.cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        max_age=verifier.expire_minutes * 60,
    )
    logger.info("[Users] Issued access token for %s", user.id)
    return response
