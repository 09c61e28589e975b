from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from src.coauthor.security.auth import User, create_access_token


def auth_headers(user_id: str, *, name: Optional[str] = None) -> Dict[str, str]:
    token = create_access_token(User(user_id=user_id, name=name or user_id.split("@")[0]))
    return {"Authorization": f"Bearer {token}"}


class FakeChatClient:
    """Stands in for the upstream chat model.

    Queued replies are consumed in order; an exception instance is raised
    instead of returned. With the queue empty ``default`` is returned.
    """

    def __init__(self, default: str = "Generated text.") -> None:
        self.default = default
        self.replies: List[Union[str, BaseException]] = []
        self.prompts: List[str] = []
        self.kwargs: List[Dict[str, Any]] = []
        self.sleeps: List[float] = []
        self.gateway: Any = None
        self.on_call: Optional[Callable[[], Awaitable[None]]] = None

    def queue(self, *items: Union[str, BaseException]) -> None:
        self.replies.extend(items)

    def fail_always(self, exc: BaseException) -> None:
        self.replies = [exc] * 50

    async def ainvoke(self, prompt: str, **kwargs: Any) -> SimpleNamespace:
        self.prompts.append(prompt)
        self.kwargs.append(kwargs)
        if self.on_call is not None:
            await self.on_call()
        item = self.replies.pop(0) if self.replies else self.default
        if isinstance(item, BaseException):
            raise item
        return SimpleNamespace(content=item)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
