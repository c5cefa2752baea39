# util/ledger.py
# 餘額一律走 adjust() 原子加減；記憶體內的餘額只是鏡像
import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Protocol

from util.db import db
from util.errors import InsufficientFunds, NotFound

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    def get_balance(self, user_id) -> int: ...

    def adjust(self, user_id, delta: int) -> int: ...

    def append_history(self, user_id, record: Dict[str, Any]) -> None: ...


def history_record(game: str, choice: str, amount: int, result: str,
                   outcome: str | None = None, payout: int = 0, **detail) -> Dict[str, Any]:
    return {
        "game": game,
        "choice": choice,
        "amount": int(amount),
        "payout": int(payout),
        "result": result,
        "outcome": outcome,
        "detail": detail or None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class PostgresLedger:
    def __init__(self, dsn: str | None = None):
        self._dsn = dsn

    def get_balance(self, user_id) -> int:
        with db(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("SELECT balance FROM users WHERE id=%s;", (user_id,))
            row = cur.fetchone()
            if not row:
                raise NotFound("user not found")
            return int(row["balance"])

    def adjust(self, user_id, delta: int) -> int:
        delta = int(delta)
        with db(self._dsn) as conn, conn.cursor() as cur:
            # 單一 UPDATE 完成檢查與加減，不做 read-modify-write
            cur.execute("""
              UPDATE users
              SET balance = balance + %s
              WHERE id=%s AND balance + %s >= 0
              RETURNING balance;
            """, (delta, user_id, delta))
            row = cur.fetchone()
            if row:
                conn.commit()
                return int(row["balance"])
            cur.execute("SELECT 1 FROM users WHERE id=%s;", (user_id,))
            if not cur.fetchone():
                raise NotFound("user not found")
            raise InsufficientFunds("insufficient balance")

    def append_history(self, user_id, record: Dict[str, Any]) -> None:
        with db(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("""
              INSERT INTO game_history (user_id, game, choice, amount, payout, result, outcome, detail)
              VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb);
            """, (
                user_id,
                record["game"],
                record.get("choice"),
                int(record["amount"]),
                int(record.get("payout") or 0),
                record["result"],
                record.get("outcome"),
                json.dumps(record.get("detail")) if record.get("detail") is not None else None,
            ))
            conn.commit()


@dataclass
class PendingCredit:
    user_id: Any
    amount: int
    reason: str
    attempts: int = 0
    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PendingCredits:
    """Credits that were owed but could not be written yet; retried until they land."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self._queue: List[PendingCredit] = []

    def __len__(self):
        return len(self._queue)

    async def credit(self, user_id, amount: int, reason: str) -> int | None:
        if amount <= 0:
            return None
        try:
            return await asyncio.to_thread(self.ledger.adjust, user_id, amount)
        except Exception:
            logger.exception("ledger credit failed user=%s amount=%s reason=%s; queued", user_id, amount, reason)
            self._queue.append(PendingCredit(user_id, int(amount), reason, attempts=1))
            return None

    async def flush(self) -> int:
        if not self._queue:
            return 0
        queue, self._queue = self._queue, []
        landed = 0
        for item in queue:
            try:
                await asyncio.to_thread(self.ledger.adjust, item.user_id, item.amount)
                landed += 1
            except Exception as e:
                item.attempts += 1
                logger.warning("pending credit retry failed user=%s amount=%s attempts=%s: %s",
                               item.user_id, item.amount, item.attempts, e)
                self._queue.append(item)
        if landed:
            logger.info("reconciled %s pending credits", landed)
        return landed

    async def record(self, user_id, record: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self.ledger.append_history, user_id, record)
        except Exception:
            logger.exception("history write failed user=%s", user_id)
