# auth/api.py
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, status

from util.config import PRIVILEGED_ROLES, SECRET_KEY
from util.errors import Unauthenticated

router = APIRouter()


@dataclass(frozen=True)
class Identity:
    id: int
    username: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role in PRIVILEGED_ROLES


def make_token(user_id: int, username: str, role: str = "user", secret: Optional[str] = None) -> str:
    # 帳號服務負責簽發；這裡留著給測試與本機開發
    return jwt.encode({"uid": user_id, "username": username, "role": role}, secret or SECRET_KEY, algorithm="HS256")


def verify(token: Optional[str], secret: Optional[str] = None) -> Identity:
    if not token:
        raise Unauthenticated("missing token")
    try:
        payload = jwt.decode(token, secret or SECRET_KEY, algorithms=["HS256"])
        uid = int(payload.get("uid"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise Unauthenticated("invalid token")
    return Identity(uid, str(payload.get("username") or f"user_{uid}"), str(payload.get("role") or "user"))


def bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip()


def require_user(authorization: Optional[str] = Header(None)) -> Identity:
    """
    從 Authorization: Bearer <jwt> 解析出身分
    """
    try:
        return verify(bearer(authorization))
    except Unauthenticated as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.reason)


def require_admin(me: Identity = Depends(require_user)) -> Identity:
    if not me.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin only")
    return me


@router.get("/me")
def me(me: Identity = Depends(require_user)):
    return {"id": me.id, "username": me.username, "role": me.role}
