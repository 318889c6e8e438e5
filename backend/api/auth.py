"""
Authentication Routes

Exchanges the application secret for a bearer token.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, HTTPException, status
from jose import jwt
from pydantic import BaseModel

from api.dependencies import TokenDep
from config import settings

logger = logging.getLogger(__name__)
router = APIRouter()


class TokenRequest(BaseModel):
    app_secret: str
    user: str = "frontend"


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


@router.post("/token", response_model=TokenResponse)
async def create_token(request: TokenRequest):
    if not secrets.compare_digest(request.app_secret, settings.api_token):
        logger.warning("Rejected token request for %s", request.user)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid application secret",
        )

    expires = datetime.now(timezone.utc) + timedelta(minutes=settings.token_expire_minutes)
    token = jwt.encode(
        {"sub": request.user, "exp": expires},
        settings.secret_key,
        algorithm="HS256",
    )
    return TokenResponse(access_token=token, expires_in=settings.token_expire_minutes * 60)


@router.get("/status")
async def auth_status(user: TokenDep):
    return {"authenticated": True, "user": user}
