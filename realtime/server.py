# realtime/server.py
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

import socketio

from auth.api import Identity, verify
from baccarat.service import Driver, RoundScheduler
from blackjack.service import BlackjackService
from util.config import ALLOWED_ORIGINS
from util.errors import GameError, Unauthenticated, failure

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=ALLOWED_ORIGINS or "*")

BACCARAT_NS = "/baccarat"
BLACKJACK_NS = "/blackjack"

_services: Dict[str, Any] = {}
_user_sids: Dict[str, Dict[Any, set]] = {BACCARAT_NS: {}, BLACKJACK_NS: {}}


class SocketEmitter:
    def __init__(self, namespace: str, server: socketio.AsyncServer = sio):
        self.namespace = namespace
        self.server = server

    async def broadcast(self, event, payload):
        await self.server.emit(event, payload, namespace=self.namespace)

    async def to_user(self, user_id, event, payload):
        await self.server.emit(event, payload, room=_user_room(user_id), namespace=self.namespace)

    async def to_admins(self, event, payload):
        await self.server.emit(event, payload, room="admins", namespace=self.namespace)


def bind(scheduler: RoundScheduler, blackjack: BlackjackService) -> None:
    _services["baccarat"] = scheduler
    _services["blackjack"] = blackjack


def _user_room(user_id) -> str:
    return f"user:{user_id}"


def _resolve_token(auth: Optional[dict], environ: dict) -> Optional[str]:
    token = auth.get("token") if isinstance(auth, dict) else None
    if token:
        return token
    return parse_qs(environ.get("QUERY_STRING", "")).get("token", [None])[0]


async def _identity(sid: str, namespace: str) -> Identity:
    session = await sio.get_session(sid, namespace=namespace)
    ident = session.get("identity") if session else None
    if ident is None:
        raise Unauthenticated("not authenticated")
    return ident


async def _attach(sid: str, environ: dict, auth: Optional[dict], namespace: str) -> Optional[Identity]:
    try:
        ident = verify(_resolve_token(auth, environ))
    except Unauthenticated:
        return None
    await sio.save_session(sid, {"identity": ident}, namespace=namespace)
    await sio.enter_room(sid, _user_room(ident.id), namespace=namespace)
    if ident.is_admin:
        await sio.enter_room(sid, "admins", namespace=namespace)
    _user_sids[namespace].setdefault(ident.id, set()).add(sid)
    return ident


def _detach(sid: str, ident: Identity, namespace: str) -> bool:
    """True when this was the user's last connection on the namespace."""
    sids = _user_sids[namespace].get(ident.id, set())
    sids.discard(sid)
    if sids:
        return False
    _user_sids[namespace].pop(ident.id, None)
    return True


async def _guarded(coro) -> Dict[str, Any]:
    # 單一連線的錯誤不影響整桌
    try:
        return await coro
    except GameError as e:
        return failure(e)
    except Exception:
        logger.exception("socket handler failed")
        return failure(GameError("internal error"))


def _int(data: Any, key: str, default: Optional[int] = None) -> Optional[int]:
    value = data.get(key, default) if isinstance(data, dict) else default
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


# ====== 百家樂 ======

@sio.on("connect", namespace=BACCARAT_NS)
async def bac_connect(sid, environ, auth=None):
    ident = await _attach(sid, environ, auth, BACCARAT_NS)
    if ident is None:
        return False
    sched: RoundScheduler = _services["baccarat"]
    status = await sched.join(ident.id, ident.username, ident.role)
    await sio.emit("betting_status", status, room=sid, namespace=BACCARAT_NS)
    await sio.emit("deck_status", sched.table.deck_status(), room=sid, namespace=BACCARAT_NS)
    if ident.is_admin:
        await sio.emit("scheduler_status", sched.status(), room=sid, namespace=BACCARAT_NS)
    return True


@sio.on("disconnect", namespace=BACCARAT_NS)
async def bac_disconnect(sid, *args):
    try:
        ident = await _identity(sid, BACCARAT_NS)
    except (Unauthenticated, KeyError):
        return
    if _detach(sid, ident, BACCARAT_NS):
        _services["baccarat"].leave(ident.id)


@sio.on("place_bet", namespace=BACCARAT_NS)
async def bac_place_bet(sid, data):
    async def run():
        ident = await _identity(sid, BACCARAT_NS)
        choice = data.get("choice") if isinstance(data, dict) else None
        return await _services["baccarat"].place_bet(ident.id, ident.username, str(choice), _int(data, "amount", 0))
    return await _guarded(run())


@sio.on("cancel_bet", namespace=BACCARAT_NS)
async def bac_cancel_bet(sid, data=None):
    async def run():
        ident = await _identity(sid, BACCARAT_NS)
        return await _services["baccarat"].cancel_bet(ident.id)
    return await _guarded(run())


@sio.on("get_betting_status", namespace=BACCARAT_NS)
async def bac_betting_status(sid, data=None):
    async def run():
        ident = await _identity(sid, BACCARAT_NS)
        sched: RoundScheduler = _services["baccarat"]
        out = sched.betting_status()
        out["my_bets"] = sched.my_bets(ident.id)
        return {"success": True, **out}
    return await _guarded(run())


@sio.on("get_deck_status", namespace=BACCARAT_NS)
async def bac_deck_status(sid, data=None):
    return {"success": True, **_services["baccarat"].table.deck_status()}


async def _admin(sid: str, namespace: str) -> Identity:
    ident = await _identity(sid, namespace)
    if not ident.is_admin:
        raise Unauthenticated("admin only")
    return ident


@sio.on("start_auto", namespace=BACCARAT_NS)
async def bac_start_auto(sid, data=None):
    async def run():
        await _admin(sid, BACCARAT_NS)
        return await _services["baccarat"].start(Driver.ADMIN)
    return await _guarded(run())


@sio.on("stop_auto", namespace=BACCARAT_NS)
async def bac_stop_auto(sid, data=None):
    async def run():
        await _admin(sid, BACCARAT_NS)
        return await _services["baccarat"].stop()
    return await _guarded(run())


@sio.on("start_background", namespace=BACCARAT_NS)
async def bac_start_background(sid, data=None):
    async def run():
        await _admin(sid, BACCARAT_NS)
        return await _services["baccarat"].start(Driver.BACKGROUND, _int(data, "max_rounds"))
    return await _guarded(run())


@sio.on("fix_result", namespace=BACCARAT_NS)
async def bac_fix_result(sid, data=None):
    async def run():
        ident = await _admin(sid, BACCARAT_NS)
        outcome = data.get("outcome") if isinstance(data, dict) else None
        return await _services["baccarat"].arm_fixed_result(str(outcome), _int(data, "pattern", 1) or 1, by=ident.username)
    return await _guarded(run())


@sio.on("shuffle_deck", namespace=BACCARAT_NS)
async def bac_shuffle(sid, data=None):
    async def run():
        await _admin(sid, BACCARAT_NS)
        return await _services["baccarat"].shuffle()
    return await _guarded(run())


# ====== 21 點 ======

@sio.on("connect", namespace=BLACKJACK_NS)
async def bj_connect(sid, environ, auth=None):
    ident = await _attach(sid, environ, auth, BLACKJACK_NS)
    if ident is None:
        return False
    result = await _guarded(_services["blackjack"].authenticate(ident.id, ident.username))
    if not result.get("success"):
        await sio.emit("action_result", {"action": "authenticate", **result}, room=sid, namespace=BLACKJACK_NS)
    return True


@sio.on("disconnect", namespace=BLACKJACK_NS)
async def bj_disconnect(sid, *args):
    # session 保留到閒置清理，重連可接續
    try:
        ident = await _identity(sid, BLACKJACK_NS)
    except (Unauthenticated, KeyError):
        return
    _detach(sid, ident, BLACKJACK_NS)


def _bj_action(event: str, call):
    async def handler(sid, data=None):
        async def run():
            ident = await _identity(sid, BLACKJACK_NS)
            return await call(_services["blackjack"], ident, data)
        result = await _guarded(run())
        await sio.emit("action_result", {"action": event, **result}, room=sid, namespace=BLACKJACK_NS)
        return result
    sio.on(event, handler=handler, namespace=BLACKJACK_NS)
    return handler


_bj_action("place_bet", lambda svc, me, data: svc.place_bet(me.id, _int(data, "amount", 0)))
_bj_action("start_game", lambda svc, me, data: svc.start_game(me.id))
_bj_action("hit", lambda svc, me, data: svc.hit(me.id))
_bj_action("stand", lambda svc, me, data: svc.stand(me.id))
_bj_action("double", lambda svc, me, data: svc.double(me.id))
_bj_action("insurance", lambda svc, me, data: svc.insurance(me.id, _int(data, "amount")))
_bj_action("surrender", lambda svc, me, data: svc.surrender(me.id))
_bj_action("split", lambda svc, me, data: svc.split(me.id))
_bj_action("new_game", lambda svc, me, data: svc.new_game(me.id))
_bj_action("reset_session", lambda svc, me, data: svc.reset_session(me.id, me.username))


@sio.on("get_session", namespace=BLACKJACK_NS)
async def bj_get_session(sid, data=None):
    async def run():
        ident = await _identity(sid, BLACKJACK_NS)
        return _services["blackjack"].get_session(ident.id)
    return await _guarded(run())
