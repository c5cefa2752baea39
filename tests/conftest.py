import threading
from typing import Any, Dict, List

import pytest

from cards.deck import Card, Deck, parse_cards
from util.errors import InsufficientFunds, NotFound


class MemoryLedger:
    """Ledger protocol over a dict; adjust is atomic under a lock."""

    def __init__(self, balances: Dict[Any, int] = None):
        self.balances = dict(balances or {})
        self.history: Dict[Any, List[dict]] = {}
        self.adjustments: List[tuple] = []
        self.fail_credits = False
        self._lock = threading.Lock()

    def get_balance(self, user_id) -> int:
        if user_id not in self.balances:
            raise NotFound("user not found")
        return self.balances[user_id]

    def adjust(self, user_id, delta: int) -> int:
        with self._lock:
            if user_id not in self.balances:
                raise NotFound("user not found")
            if delta > 0 and self.fail_credits:
                raise ConnectionError("ledger offline")
            if self.balances[user_id] + delta < 0:
                raise InsufficientFunds("insufficient balance")
            self.balances[user_id] += delta
            self.adjustments.append((user_id, delta))
            return self.balances[user_id]

    def append_history(self, user_id, record: dict) -> None:
        self.history.setdefault(user_id, []).append(record)


class RecordingEmitter:
    def __init__(self):
        self.events: List[tuple] = []

    async def broadcast(self, event, payload):
        self.events.append(("all", None, event, payload))

    async def to_user(self, user_id, event, payload):
        self.events.append(("user", user_id, event, payload))

    async def to_admins(self, event, payload):
        self.events.append(("admins", None, event, payload))

    def named(self, event: str) -> List[dict]:
        return [e[3] for e in self.events if e[2] == event]

    def order(self) -> List[str]:
        return [e[2] for e in self.events]


def cards(text: str) -> List[Card]:
    return parse_cards(text.split())


def stacked(text: str) -> Deck:
    """Deck that deals `text` in order, then runs dry."""
    return Deck.stacked(cards(text))


@pytest.fixture
def ledger():
    return MemoryLedger({1: 10000, 2: 10000, 3: 10000})


@pytest.fixture
def emitter():
    return RecordingEmitter()
