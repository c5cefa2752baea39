# util/errors.py
# 遊戲邏輯丟 GameError，服務邊界轉成 failure(err) 回給前端
from typing import Any, Dict

from fastapi import HTTPException


class GameError(Exception):
    kind = "game_error"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidStateTransition(GameError):
    kind = "invalid_state_transition"


class NotReady(GameError):
    kind = "not_ready"


class InsufficientFunds(GameError):
    kind = "insufficient_funds"


class InvalidAmount(GameError):
    kind = "invalid_amount"


class ResourceExhausted(GameError):
    kind = "resource_exhausted"


class NotFound(GameError):
    kind = "not_found"


class Unauthenticated(GameError):
    kind = "unauthenticated"


def success(message: str, **data: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {"success": True, "message": message}
    out.update(data)
    return out


def failure(err: GameError, **data: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {"success": False, "error": err.kind, "message": err.reason}
    out.update(data)
    return out


HTTP_STATUS = {
    "unauthenticated": 401,
    "not_found": 404,
    "invalid_state_transition": 409,
    "not_ready": 409,
    "resource_exhausted": 409,
    "insufficient_funds": 400,
    "invalid_amount": 400,
}


def unwrap(result: Dict[str, Any]) -> Dict[str, Any]:
    """Envelope -> HTTP: failures become HTTPException like the rest of the API."""
    if not result.get("success"):
        raise HTTPException(status_code=HTTP_STATUS.get(result.get("error"), 400), detail=result.get("message"))
    return result
