# blackjack/service.py
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from blackjack.dealer import DealerPacing
from blackjack.session import BlackjackSession, Settlement, Status
from cards.deck import Deck
from cards.scoring import hand_value
from util.config import DEALER_TURN_BUDGET
from util.errors import (GameError, InvalidStateTransition, NotFound, NotReady,
                         ResourceExhausted, failure, success)
from util.events import Emitter
from util.ledger import Ledger, PendingCredits, history_record
from util.registry import SessionRegistry

logger = logging.getLogger(__name__)


class BlackjackService:
    """每個 session 一把鎖：忙碌時直接拒絕；每個動作對帳本只做一次加減，扣款失敗就回滾。"""

    def __init__(self, ledger: Ledger, emitter: Emitter,
                 registry: Optional[SessionRegistry] = None,
                 pacing: Optional[DealerPacing] = None,
                 credits: Optional[PendingCredits] = None,
                 turn_budget: float = DEALER_TURN_BUDGET,
                 deck_factory: Optional[Callable[[], Deck]] = None):
        self.ledger = ledger
        self.emitter = emitter
        self.sessions: SessionRegistry[BlackjackSession] = registry if registry is not None else SessionRegistry()
        self.pacing = pacing if pacing is not None else DealerPacing()
        self.credits = credits if credits is not None else PendingCredits(ledger)
        self.turn_budget = turn_budget
        self.deck_factory = deck_factory
        self._locks: Dict[Any, asyncio.Lock] = {}
        self._dealer_tasks: Dict[Any, asyncio.Task] = {}

    def _lock_for(self, user_id) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _new_session(self, user_id, username: str, balance: int) -> BlackjackSession:
        deck = self.deck_factory() if self.deck_factory else None
        return BlackjackSession(user_id, username, balance, deck=deck)

    # ===== session 生命週期 =====

    async def authenticate(self, user_id, username: str) -> Dict[str, Any]:
        try:
            balance = await asyncio.to_thread(self.ledger.get_balance, user_id)
        except GameError as e:
            return failure(e)

        session = self.sessions.get(user_id)
        if session is not None and session.at_stake() > 0:
            # 斷線重連：桌上還有注，沿用原本那手
            session.balance = balance
            session.username = username
        else:
            session = self.sessions.put(user_id, self._new_session(user_id, username, balance))
        snap = session.snapshot()
        await self.emitter.to_user(user_id, "session_created", snap)
        return success("session ready", session=snap)

    def get_session(self, user_id) -> Dict[str, Any]:
        session = self.sessions.get(user_id)
        if session is None:
            return failure(NotFound("no blackjack session"))
        return success("ok", session=session.snapshot())

    def active_count(self) -> int:
        return len(self.sessions)

    async def reset_session(self, user_id, username: str) -> Dict[str, Any]:
        session = self.sessions.peek(user_id)
        if session is not None:
            lock = self._lock_for(user_id)
            if lock.locked() or session.status in (Status.PLAYING, Status.DEALER_TURN):
                return failure(InvalidStateTransition("cannot reset during a hand"))
            if session.pending_bet:
                await self.credits.credit(user_id, session.pending_bet, "blackjack reset refund")
            self.sessions.remove(user_id)
        return await self.authenticate(user_id, username)

    # ===== 玩家動作 =====

    async def place_bet(self, user_id, amount: int) -> Dict[str, Any]:
        return await self._act(user_id, "bet", lambda s: s.place_bet(amount))

    async def start_game(self, user_id) -> Dict[str, Any]:
        def deal(s: BlackjackSession):
            s.start_game()
            if s.status is Status.PLAYING:
                return {"player_blackjack": s.check_blackjack()}
            return {"player_blackjack": False}
        return await self._act(user_id, "deal", deal)

    async def hit(self, user_id) -> Dict[str, Any]:
        return await self._act(user_id, "hit", lambda s: {"card": _card(s.hit())})

    async def stand(self, user_id) -> Dict[str, Any]:
        return await self._act(user_id, "stand", lambda s: s.stand())

    async def double(self, user_id) -> Dict[str, Any]:
        return await self._act(user_id, "double", lambda s: {"card": _card(s.double())})

    async def insurance(self, user_id, amount: Optional[int] = None) -> Dict[str, Any]:
        return await self._act(user_id, "insurance", lambda s: {"insurance": s.insurance(amount)})

    async def surrender(self, user_id) -> Dict[str, Any]:
        return await self._act(user_id, "surrender", lambda s: {"refund": s.surrender()})

    async def split(self, user_id) -> Dict[str, Any]:
        return await self._act(user_id, "split", lambda s: s.split())

    async def new_game(self, user_id) -> Dict[str, Any]:
        return await self._act(user_id, "new_game", lambda s: s.new_game())

    async def _act(self, user_id, name: str, fn: Callable[[BlackjackSession], Any]) -> Dict[str, Any]:
        session = self.sessions.get(user_id)
        if session is None:
            return failure(NotFound("no blackjack session, authenticate first"))
        lock = self._lock_for(user_id)
        if lock.locked():
            return failure(NotReady("previous action still in progress"), session=session.snapshot())

        async with lock:
            saved = session.checkpoint()
            was_finished = session.status is Status.FINISHED
            before = session.balance
            try:
                data = fn(session) or {}
            except GameError as e:
                session.restore(saved)
                return failure(e, session=session.snapshot())

            try:
                await self._sync(session, session.balance - before, f"blackjack {name}")
            except GameError as e:
                session.restore(saved)
                return failure(e, session=session.snapshot())
            except Exception:
                logger.exception("ledger debit failed user=%s action=%s", user_id, name)
                session.restore(saved)
                return failure(NotReady("ledger unavailable, try again"), session=session.snapshot())

            if session.status is Status.FINISHED and not was_finished:
                await self._finished(session)

        if session.status is Status.DEALER_TURN:
            self._start_dealer(user_id)

        snap = session.snapshot()
        if session.outcome is not None and session.outcome.error and not was_finished:
            return failure(ResourceExhausted(session.outcome.error), session=snap, **data)
        return success(name, session=snap, **data)

    async def _sync(self, session: BlackjackSession, delta: int, reason: str) -> None:
        """Push the mirror's change to the ledger as one atomic adjustment."""
        if delta == 0:
            return
        uid = session.user_id
        if delta < 0:
            session.balance = await asyncio.to_thread(self.ledger.adjust, uid, delta)
        else:
            balance = await self.credits.credit(uid, delta, reason)
            if balance is not None:
                session.balance = balance
        await self.emitter.to_user(uid, "balance_changed", {"balance": session.balance, "reason": reason})

    async def _finished(self, session: BlackjackSession) -> None:
        out: Settlement = session.outcome
        for i, r in enumerate(out.results):
            detail = {
                "cards": [str(c) for c in r.cards],
                "dealer_cards": [str(c) for c in out.dealer],
                "split": out.split,
                "doubled": out.hands[r.index].doubled,
            }
            if i == 0:
                detail.update(insurance=out.insurance, insurance_result=out.insurance_result,
                              insurance_payout=out.insurance_payout)
            if out.error:
                detail["error"] = out.error
            await self.credits.record(session.user_id, history_record(
                "blackjack",
                f"split_{r.index + 1}" if out.split else "main",
                r.bet, r.result,
                outcome=f"{r.value} vs {hand_value(out.dealer)}",
                payout=r.payout,
                **detail,
            ))
        logger.info("blackjack hand finished user=%s results=%s payout=%s",
                    session.user_id, [r.result for r in out.results], out.total_payout)
        await self.emitter.to_user(session.user_id, "game_finished", {
            "result": out.to_dict(),
            "session": session.snapshot(),
        })

    # ===== 莊家回合 =====

    def _start_dealer(self, user_id) -> None:
        task = self._dealer_tasks.get(user_id)
        if task is not None and not task.done():
            return
        self._dealer_tasks[user_id] = asyncio.create_task(self._dealer_turn(user_id))

    async def wait_dealer(self, user_id) -> None:
        task = self._dealer_tasks.get(user_id)
        if task is not None:
            await task

    async def _dealer_turn(self, user_id) -> None:
        session = self.sessions.peek(user_id)
        if session is None:
            return
        async with self._lock_for(user_id):
            if session.status is not Status.DEALER_TURN:
                return
            before = session.balance
            try:
                await asyncio.wait_for(self._dealer_steps(session), timeout=self.turn_budget)
            except asyncio.TimeoutError:
                logger.warning("dealer turn timed out user=%s; finalizing", user_id)
            except Exception:
                logger.exception("dealer turn failed user=%s; finalizing", user_id)
            if session.status is Status.DEALER_TURN:
                session.determine_result(force=True)
            try:
                await self._sync(session, session.balance - before, "blackjack payout")
            except Exception:
                logger.exception("payout sync failed user=%s", user_id)
            if session.status is Status.FINISHED:
                await self._finished(session)

    async def _dealer_steps(self, session: BlackjackSession) -> None:
        uid = session.user_id
        # 順序固定：翻暗牌 -> 檢查莊家 21 點 -> 補牌
        await self.pacing.pause(self.pacing.reveal)
        hole = session.reveal_hole_card()
        await self.emitter.to_user(uid, "dealer_card_revealed", {"card": hole.to_dict(), "session": session.snapshot()})

        await self.pacing.pause(self.pacing.blackjack_check)
        dealer_bj = session.check_dealer_blackjack()
        await self.emitter.to_user(uid, "dealer_blackjack_checked", {"dealer_blackjack": dealer_bj})
        if session.status is not Status.DEALER_TURN:
            return

        while session.dealer_should_draw():
            await self.pacing.pause(self.pacing.per_card)
            card = session.dealer_draw()
            if card is None:
                return
            await self.emitter.to_user(uid, "dealer_card", {"card": card.to_dict(), "session": session.snapshot()})

        await self.pacing.pause(self.pacing.finish)
        session.determine_result()

    # ===== 管理 / 清理 =====

    async def admin_adjust(self, user_id, delta: int) -> Dict[str, Any]:
        try:
            balance = await asyncio.to_thread(self.ledger.adjust, user_id, int(delta))
        except GameError as e:
            return failure(e)
        session = self.sessions.peek(user_id)
        if session is not None:
            session.balance = balance
        await self.emitter.to_user(user_id, "balance_changed", {"balance": balance, "reason": "admin_adjust"})
        return success("balance adjusted", balance=balance)

    async def cleanup(self) -> int:
        stale = self.sessions.sweep()
        for uid, session in stale:
            task = self._dealer_tasks.pop(uid, None)
            if task is not None and not task.done():
                await task
            await self._abandon(session)
            self._locks.pop(uid, None)
        await self.credits.flush()
        return len(stale)

    async def _abandon(self, session: BlackjackSession) -> None:
        """Idle eviction: a staged bet goes back, a hand in play is stood out."""
        uid = session.user_id
        if session.status is Status.BETTING:
            await self.credits.credit(uid, session.pending_bet, "blackjack idle refund")
            session.pending_bet = 0
            return
        if session.status not in (Status.PLAYING, Status.DEALER_TURN):
            return
        before = session.balance
        while session.status is Status.PLAYING:
            session.stand()
        if session.status is Status.DEALER_TURN:
            session.check_dealer_blackjack()
        while session.dealer_should_draw():
            if session.dealer_draw() is None:
                break
        if session.status is Status.DEALER_TURN:
            session.determine_result()
        await self._sync(session, session.balance - before, "blackjack idle settle")
        await self._finished(session)


def _card(card) -> Optional[dict]:
    return card.to_dict() if card is not None else None
