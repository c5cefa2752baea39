# baccarat/service.py
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from baccarat.betting import CHOICES, Bet, BettingWindow
from baccarat.logic import OUTCOMES, BaccaratRound, BaccaratTable, fixed_pattern
from baccarat.settlement import SettlementEngine
from util.config import (BACCARAT_BET_SECONDS, BACCARAT_CARD_INTERVAL, BACCARAT_CLOSE_PAUSE,
                         BACCARAT_MAX_BET, BACCARAT_MIN_BET, BACCARAT_NEXT_ROUND_PAUSE,
                         BACCARAT_RESULT_PAUSE, BACKGROUND_MAX_ROUNDS, PRIVILEGED_ROLES)
from util.errors import (GameError, InvalidAmount, InvalidStateTransition, NotReady,
                         failure, success)
from util.events import Emitter
from util.ledger import Ledger, PendingCredits

logger = logging.getLogger(__name__)

ERROR_BACKOFF = 2.0


class Driver(str, Enum):
    ADMIN = "admin"            # 管理員手動開桌
    PRESENCE = "presence"      # 有玩家在線就自動開局
    BACKGROUND = "background"  # 指定局數後自動停止


@dataclass
class Timings:
    bet_seconds: float = BACCARAT_BET_SECONDS
    close_pause: float = BACCARAT_CLOSE_PAUSE
    card_interval: float = BACCARAT_CARD_INTERVAL
    result_pause: float = BACCARAT_RESULT_PAUSE
    next_round_pause: float = BACCARAT_NEXT_ROUND_PAUSE

    @classmethod
    def zero(cls) -> "Timings":
        return cls(0, 0, 0, 0, 0)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RoundScheduler:
    """開下注 -> 收注 -> 發牌 -> 逐張開牌 -> 派彩，一次只有一個 driver 在跑。"""

    def __init__(self, ledger: Ledger, emitter: Emitter, table: Optional[BaccaratTable] = None,
                 timings: Optional[Timings] = None, archive=None,
                 credits: Optional[PendingCredits] = None,
                 min_bet: int = BACCARAT_MIN_BET, max_bet: int = BACCARAT_MAX_BET):
        self.ledger = ledger
        self.emitter = emitter
        self.table = table if table is not None else BaccaratTable()
        self.timings = timings if timings is not None else Timings()
        self.archive = archive
        self.credits = credits if credits is not None else PendingCredits(ledger)
        self.settlement = SettlementEngine(self.credits, emitter)
        self.min_bet = min_bet
        self.max_bet = max_bet

        self.window: Optional[BettingWindow] = None
        self.phase = "idle"  # idle | betting | dealing | settling
        self.round_no = 0
        self.last_round: Optional[BaccaratRound] = None
        self.history: deque = deque(maxlen=50)
        self.fixed: Optional[Tuple[str, int]] = None
        self.present: Dict[Any, str] = {}

        self.driver: Optional[Driver] = None
        self.max_rounds: Optional[int] = None
        self.rounds_completed = 0
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None
        self._driver_lock = asyncio.Lock()

    # ===== driver 控制 =====

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def in_flight(self) -> bool:
        return self.phase in ("dealing", "settling") or (self.window is not None and self.window.is_open)

    async def start(self, driver: Driver, max_rounds: Optional[int] = None) -> Dict[str, Any]:
        async with self._driver_lock:
            try:
                if driver is Driver.BACKGROUND:
                    if max_rounds is None or not 1 <= max_rounds <= BACKGROUND_MAX_ROUNDS:
                        raise InvalidAmount(f"max_rounds must be between 1 and {BACKGROUND_MAX_ROUNDS}")
                    if self.in_flight():
                        raise NotReady("a round is in progress")
                else:
                    max_rounds = None
                if self.running and self.driver is driver:
                    raise InvalidStateTransition(f"{driver.value} run already active")
            except GameError as e:
                return failure(e)

            await self._stop_current()
            self._stop = asyncio.Event()
            self.driver = driver
            self.max_rounds = max_rounds
            self.rounds_completed = 0
            self._task = asyncio.create_task(self._run())
            logger.info("baccarat scheduler started driver=%s max_rounds=%s", driver.value, max_rounds)
        await self.emitter.broadcast("scheduler_status", self.status())
        return success("scheduler started", **self.status())

    async def stop(self) -> Dict[str, Any]:
        async with self._driver_lock:
            if not self.running:
                return failure(InvalidStateTransition("scheduler is not running"))
            await self._stop_current()
        return success("scheduler stopped", **self.status())

    async def _stop_current(self) -> None:
        task = self._task
        if task is None:
            return
        if self._stop is not None:
            self._stop.set()
        if not task.done():
            await task
        self._task = None

    async def shutdown(self) -> None:
        async with self._driver_lock:
            await self._stop_current()

    async def _wait_stop(self, seconds: float) -> bool:
        if self._stop is None:
            await asyncio.sleep(seconds)
            return False
        if self._stop.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _run(self) -> None:
        try:
            while not self._stop.is_set():
                try:
                    rnd = await self.play_one_round()
                except Exception:
                    # 記錄錯誤但不中斷循環
                    logger.exception("baccarat round %s failed", self.round_no)
                    self.phase = "idle"
                    if await self._wait_stop(ERROR_BACKOFF):
                        break
                    continue
                if rnd is None:
                    break
                self.rounds_completed += 1
                if self.driver is Driver.BACKGROUND:
                    await self.emitter.to_admins("background_progress", {
                        "rounds_completed": self.rounds_completed,
                        "max_rounds": self.max_rounds,
                    })
                    if self.rounds_completed >= self.max_rounds:
                        logger.info("background run finished after %s rounds", self.rounds_completed)
                        break
                if await self._wait_stop(self.timings.next_round_pause):
                    break
        finally:
            logger.info("baccarat scheduler stopped driver=%s rounds=%s",
                        self.driver.value if self.driver else None, self.rounds_completed)
            self.driver = None
            self.max_rounds = None
            self.phase = "idle"
            try:
                await self.emitter.broadcast("scheduler_status", self.status())
            except Exception:
                logger.exception("scheduler_status broadcast failed")

    # ===== 一局 =====

    async def open_betting(self) -> BettingWindow:
        await self.credits.flush()
        self.round_no += 1
        closes_at = utc_now() + timedelta(seconds=self.timings.bet_seconds)
        window = BettingWindow(self.round_no, closes_at, self.min_bet, self.max_bet)
        self.window = window
        self.phase = "betting"
        await self.emitter.broadcast("betting_started", {
            "round_no": window.round_no,
            "closes_at": closes_at.isoformat(),
            "seconds": self.timings.bet_seconds,
        })
        return window

    async def void_window(self, window: BettingWindow, reason: str) -> int:
        bets = window.close()
        self.fixed = None
        self.phase = "idle"
        await self.emitter.broadcast("betting_cancelled", {"round_no": window.round_no, "reason": reason})
        return await self.settlement.refund(window.round_no, bets, reason)

    async def play_one_round(self) -> Optional[BaccaratRound]:
        window = await self.open_betting()
        if await self._wait_stop(self.timings.bet_seconds):
            await self.void_window(window, "table stopped")
            return None
        return await self.run_round(window)

    async def run_round(self, window: BettingWindow) -> BaccaratRound:
        bets = window.close()
        self.phase = "dealing"
        await self.emitter.broadcast("betting_closed", {"round_no": window.round_no, "stats": window.stats()})
        await asyncio.sleep(self.timings.close_pause)

        fixed, self.fixed = self.fixed, None
        try:
            if fixed:
                rnd = self.table.play_fixed_round(*fixed)
            else:
                rnd = self.table.play_round()
        except Exception:
            self.phase = "idle"
            await self.settlement.refund(window.round_no, bets, "deal failed")
            raise

        for side, index, card in rnd.dealt():
            await self.emitter.broadcast("card_dealt", {
                "round_no": window.round_no, "side": side, "index": index, "card": card.to_dict(),
            })
            await asyncio.sleep(self.timings.card_interval)

        payload = rnd.to_dict()
        payload["round_no"] = window.round_no
        await self.emitter.broadcast("round_resolved", payload)
        logger.info("round %s: %s %s-%s%s", window.round_no, rnd.result,
                    rnd.player_score, rnd.banker_score, " (fixed)" if rnd.fixed else "")
        await asyncio.sleep(self.timings.result_pause)

        self.phase = "settling"
        await self.settlement.settle(window.round_no, rnd, bets)
        self.last_round = rnd
        self.history.append({"round_no": window.round_no, "result": rnd.result,
                             "player_score": rnd.player_score, "banker_score": rnd.banker_score,
                             "player_pair": rnd.player_pair, "banker_pair": rnd.banker_pair})
        if self.archive is not None:
            try:
                await asyncio.to_thread(self.archive.save, window.round_no, rnd, window.stats(),
                                        window.total_amount(), window.bettor_count())
            except Exception:
                logger.exception("round archive failed round=%s", window.round_no)
        self.phase = "idle"
        return rnd

    # ===== 玩家動作 =====

    async def place_bet(self, user_id, username: str, choice: str, amount: int) -> Dict[str, Any]:
        window = self.window
        try:
            if window is None or not window.is_open:
                raise InvalidStateTransition("betting is not open")
            window.check(choice, amount)
            balance = await asyncio.to_thread(self.ledger.adjust, user_id, -amount)
        except GameError as e:
            return failure(e)

        # 扣款期間可能已經封盤
        if self.window is not window or not window.is_open:
            await self.credits.credit(user_id, amount, "late bet refund")
            return failure(InvalidStateTransition("betting closed before the bet was accepted"))

        window.place(Bet(user_id, choice, amount, username))
        mine = window.bets_of(user_id)
        await self.emitter.to_user(user_id, "balance_changed", {"balance": balance, "reason": "baccarat_bet"})
        await self.emitter.to_user(user_id, "my_bets_updated", {"round_no": window.round_no, "bets": mine})
        await self.emitter.broadcast("betting_stats", {"round_no": window.round_no, "stats": window.stats()})
        return success("bet placed", balance=balance, bets=mine)

    async def cancel_bet(self, user_id) -> Dict[str, Any]:
        window = self.window
        try:
            if window is None:
                raise InvalidStateTransition("betting is not open")
            bet = window.cancel_last(user_id)
        except GameError as e:
            return failure(e)

        balance = await self.credits.credit(user_id, bet.amount, "bet cancel")
        mine = window.bets_of(user_id)
        if balance is not None:
            await self.emitter.to_user(user_id, "balance_changed", {"balance": balance, "reason": "baccarat_cancel"})
        await self.emitter.to_user(user_id, "my_bets_updated", {"round_no": window.round_no, "bets": mine})
        await self.emitter.broadcast("betting_stats", {"round_no": window.round_no, "stats": window.stats()})
        return success("bet cancelled", choice=bet.choice, amount=bet.amount, balance=balance, bets=mine)

    # ===== 管理 =====

    async def arm_fixed_result(self, outcome: str, pattern: int = 1, by: str = "") -> Dict[str, Any]:
        try:
            if self.window is None or not self.window.is_open:
                raise InvalidStateTransition("results can only be fixed while betting is open")
            if outcome not in OUTCOMES:
                raise InvalidAmount(f"outcome must be one of {', '.join(OUTCOMES)}")
        except GameError as e:
            return failure(e)

        chosen = fixed_pattern(outcome, pattern)
        self.fixed = (outcome, pattern)
        notice = {"round_no": self.window.round_no, "outcome": outcome, "pattern": pattern,
                  "description": chosen.description, "by": by}
        logger.info("fixed result armed: %s", notice)
        await self.emitter.to_admins("result_fixed", notice)
        return success("result fixed for next round", **notice)

    async def shuffle(self) -> Dict[str, Any]:
        if self.phase == "dealing":
            return failure(NotReady("cannot shuffle while cards are being dealt"))
        status = self.table.shuffle()
        await self.emitter.broadcast("deck_shuffled", status)
        return success("deck shuffled", deck=status)

    # ===== 在線玩家 =====

    async def join(self, user_id, username: str, role: str = "user") -> Dict[str, Any]:
        if role not in PRIVILEGED_ROLES:
            self.present[user_id] = username
            if not self.running:
                await self.start(Driver.PRESENCE)
        out = self.betting_status()
        out["my_bets"] = self.my_bets(user_id)
        return out

    def leave(self, user_id) -> None:
        # 離線不停桌，已下注的局照常結算
        self.present.pop(user_id, None)

    # ===== 查詢 =====

    def status(self) -> Dict[str, Any]:
        remaining = None
        if self.max_rounds is not None:
            remaining = max(0, self.max_rounds - self.rounds_completed)
        return {
            "live": self.driver is not None,
            "driver": self.driver.value if self.driver else None,
            "phase": self.phase,
            "round_no": self.round_no,
            "rounds_completed": self.rounds_completed,
            "max_rounds": self.max_rounds,
            "rounds_remaining": remaining,
            "present": len(self.present),
            "fixed_armed": self.fixed is not None,
            "pending_credits": len(self.credits),
            "deck": self.table.deck_status(),
        }

    def betting_status(self) -> Dict[str, Any]:
        if self.window is not None and self.window.is_open:
            return self.window.status()
        empty = {c: {"count": 0, "total_amount": 0, "bettor_count": 0} for c in CHOICES}
        return {"active": False, "round_no": self.round_no, "closes_at": None, "seconds_left": 0, "stats": empty}

    def my_bets(self, user_id) -> Dict[str, int]:
        if self.window is not None and self.window.is_open:
            return self.window.bets_of(user_id)
        return {c: 0 for c in CHOICES}

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        return list(self.history)[-limit:]
