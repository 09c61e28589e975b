from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from ...domain.chat_models import (
    AnalyzeRequest,
    ChatReply,
    ChatRequest,
    ContributionEstimate,
    ContributionsRequest,
    GenerateRequest,
    ImproveRequest,
    MutationResult,
    SuggestionsRequest,
)
from ...security.auth import User, get_current_user
from ...security.rate_limit import RateLimitExceeded, rate_limit_ai_request
from ...services.ai_gateway import get_ai_gateway
from ...services.content_engine import ContentMutationEngine, get_content_engine

router = APIRouter(prefix="/ai", tags=["ai"])


def _charge_ai_budget(user_id: str) -> None:
    try:
        rate_limit_ai_request(user_id)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many AI requests. Please slow down and try again shortly.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc


def ai_user(user: User = Depends(get_current_user)) -> User:
    """Current user, counted against the per-user AI request budget."""
    _charge_ai_budget(user.user_id)
    return user


@router.post("/message", response_model=ChatReply)
async def send_message(
    req: ChatRequest,
    user: User = Depends(ai_user),
    engine: ContentMutationEngine = Depends(get_content_engine),
) -> ChatReply:
    return await engine.send_message(req.project_id, user.user_id, req.message, req.mode)


@router.post("/generate", response_model=MutationResult)
async def generate_content(
    req: GenerateRequest,
    user: User = Depends(ai_user),
    engine: ContentMutationEngine = Depends(get_content_engine),
    socket_id: Optional[str] = Header(default=None, alias="X-Socket-Id"),
) -> MutationResult:
    return await engine.generate(
        req.project_id, user.user_id, req.prompt, current_content=req.current_content, origin=socket_id
    )


@router.post("/improve", response_model=MutationResult)
async def improve_content(
    req: ImproveRequest,
    user: User = Depends(ai_user),
    engine: ContentMutationEngine = Depends(get_content_engine),
    socket_id: Optional[str] = Header(default=None, alias="X-Socket-Id"),
) -> MutationResult:
    return await engine.improve(
        req.project_id,
        user.user_id,
        req.instructions,
        content=req.content,
        selection=req.selection,
        origin=socket_id,
    )


@router.post("/analyze", response_model=MutationResult)
async def analyze_content(
    req: AnalyzeRequest,
    user: User = Depends(ai_user),
    engine: ContentMutationEngine = Depends(get_content_engine),
) -> MutationResult:
    return await engine.analyze(req.project_id, user.user_id, req.instructions, req.content)


@router.post("/suggestions", response_model=List[str])
async def get_suggestions(
    req: SuggestionsRequest,
    user: User = Depends(ai_user),
    engine: ContentMutationEngine = Depends(get_content_engine),
) -> List[str]:
    return await engine.get_suggestions(req.project_id, user.user_id, req.content, req.instructions)


@router.post("/contributions", response_model=ContributionEstimate)
async def analyze_contributions(
    req: ContributionsRequest,
    user: User = Depends(ai_user),
    engine: ContentMutationEngine = Depends(get_content_engine),
) -> ContributionEstimate:
    return await engine.estimate_contributions(req.project_id, user.user_id, req.content, req.history)


@router.get("/health")
async def ai_health(
    user: User = Depends(get_current_user),
    check: bool = Query(default=False, description="Run a small live generation before reporting"),
) -> dict:
    gateway = get_ai_gateway()
    body: dict = {}
    if check:
        _charge_ai_budget(user.user_id)
        body["healthy"] = await gateway.health_check()
    body["state"] = gateway.state.value
    body["max_attempts"] = gateway.retry_policy.max_attempts
    return body
