# util/events.py
from typing import Any, Dict, Protocol


class Emitter(Protocol):
    """Outbound event sink; the socket layer implements it, tests record it."""

    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None: ...

    async def to_user(self, user_id, event: str, payload: Dict[str, Any]) -> None: ...

    async def to_admins(self, event: str, payload: Dict[str, Any]) -> None: ...
