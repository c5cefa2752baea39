# baccarat/api.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, Request

from auth.api import Identity, require_admin, require_user
from baccarat.schema import BackgroundBody, BetBody, FixResultBody, HistoryItem
from baccarat.service import Driver, RoundScheduler
from util.errors import unwrap

logger = logging.getLogger(__name__)

router = APIRouter()


def get_scheduler(request: Request) -> RoundScheduler:
    return request.app.state.baccarat


# ====== 桌況 ======

@router.get("/status")
def table_status(sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return {"betting": sched.betting_status(), "table": sched.status()}


@router.get("/deck")
def deck_status(sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return sched.table.deck_status()


@router.get("/history", response_model=List[HistoryItem])
async def history(
    limit: int = Query(20, ge=1, le=50),
    sched: RoundScheduler = Depends(get_scheduler),
):
    if sched.archive is not None:
        try:
            return await asyncio.to_thread(sched.archive.recent, limit)
        except Exception:
            logger.exception("round archive read failed; serving memory history")
    return sched.recent(limit)


# ====== 下注 ======

@router.get("/my-bets")
def my_bets(me: Identity = Depends(require_user), sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return {"round_no": sched.round_no, "bets": sched.my_bets(me.id)}


@router.post("/bet")
async def place_bet(body: BetBody, me: Identity = Depends(require_user),
                    sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    """
    僅在下注視窗開啟時允許下注
    """
    return unwrap(await sched.place_bet(me.id, me.username, body.choice, body.amount))


@router.post("/bet/cancel")
async def cancel_bet(me: Identity = Depends(require_user),
                     sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return unwrap(await sched.cancel_bet(me.id))


# ====== 管理 API ======

@router.get("/admin/status")
def admin_status(_: Identity = Depends(require_admin), sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return sched.status()


@router.post("/admin/start")
async def admin_start(_: Identity = Depends(require_admin), sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return unwrap(await sched.start(Driver.ADMIN))


@router.post("/admin/stop")
async def admin_stop(_: Identity = Depends(require_admin), sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return unwrap(await sched.stop())


@router.post("/admin/background")
async def admin_background(body: BackgroundBody, _: Identity = Depends(require_admin),
                           sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return unwrap(await sched.start(Driver.BACKGROUND, body.max_rounds))


@router.post("/admin/fix-result")
async def admin_fix_result(body: FixResultBody, me: Identity = Depends(require_admin),
                           sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return unwrap(await sched.arm_fixed_result(body.outcome, body.pattern, by=me.username))


@router.post("/admin/shuffle")
async def admin_shuffle(_: Identity = Depends(require_admin), sched: RoundScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    return unwrap(await sched.shuffle())
