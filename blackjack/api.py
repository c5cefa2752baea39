# blackjack/api.py
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request

from auth.api import Identity, require_admin, require_user
from blackjack.schema import AdjustBody, BetBody, InsuranceBody
from blackjack.service import BlackjackService
from util.errors import unwrap

router = APIRouter()


def get_blackjack(request: Request) -> BlackjackService:
    return request.app.state.blackjack


@router.post("/session")
async def open_session(me: Identity = Depends(require_user),
                       svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.authenticate(me.id, me.username))


@router.get("/session")
def get_session(me: Identity = Depends(require_user),
                svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(svc.get_session(me.id))


@router.post("/session/reset")
async def reset_session(me: Identity = Depends(require_user),
                        svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.reset_session(me.id, me.username))


@router.post("/bet")
async def place_bet(body: BetBody, me: Identity = Depends(require_user),
                    svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.place_bet(me.id, body.amount))


@router.post("/deal")
async def deal(me: Identity = Depends(require_user), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.start_game(me.id))


@router.post("/hit")
async def hit(me: Identity = Depends(require_user), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.hit(me.id))


@router.post("/stand")
async def stand(me: Identity = Depends(require_user), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.stand(me.id))


@router.post("/double")
async def double(me: Identity = Depends(require_user), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.double(me.id))


@router.post("/insurance")
async def insurance(body: Optional[InsuranceBody] = None, me: Identity = Depends(require_user),
                    svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.insurance(me.id, body.amount if body else None))


@router.post("/surrender")
async def surrender(me: Identity = Depends(require_user), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.surrender(me.id))


@router.post("/split")
async def split(me: Identity = Depends(require_user), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.split(me.id))


@router.post("/new-game")
async def new_game(me: Identity = Depends(require_user), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.new_game(me.id))


# ====== 管理 API ======

@router.get("/admin/sessions")
def admin_sessions(_: Identity = Depends(require_admin), svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return {"active": svc.active_count()}


@router.post("/admin/adjust")
async def admin_adjust(body: AdjustBody, _: Identity = Depends(require_admin),
                       svc: BlackjackService = Depends(get_blackjack)) -> Dict[str, Any]:
    return unwrap(await svc.admin_adjust(body.user_id, body.delta))
