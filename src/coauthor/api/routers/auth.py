from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...security.auth import (
    JwtConfig,
    TokenRequest,
    TokenResponse,
    User,
    create_access_token,
    get_current_user,
)
from ...security.rate_limit import RateLimitExceeded, rate_limit_token_request

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/token", response_model=TokenResponse)
def issue_token(req: TokenRequest, request: Request) -> TokenResponse:
    """Development token: the email becomes the user id, no credential check."""
    host = request.client.host if request.client else "unknown"
    try:
        rate_limit_token_request(host, req.email)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many token requests. Please try again later.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc

    email = req.email.lower()
    user = User(user_id=email, name=req.name or email.split("@")[0])
    cfg = JwtConfig.from_env()
    token = create_access_token(user, cfg)
    return TokenResponse(access_token=token, expires_in=cfg.expires_min * 60, user=user)


@router.get("/me", response_model=User)
def me(user: User = Depends(get_current_user)) -> User:
    return user
