# baccarat/betting.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from util.config import BACCARAT_MAX_BET, BACCARAT_MIN_BET
from util.errors import InvalidAmount, InvalidStateTransition, NotFound

CHOICES = ("player", "banker", "tie", "player_pair", "banker_pair")


@dataclass
class Bet:
    bettor_id: Any
    choice: str
    amount: int
    username: str = ""
    placed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def check_bet(choice: str, amount: int, min_bet: int = BACCARAT_MIN_BET,
              max_bet: int = BACCARAT_MAX_BET) -> None:
    if choice not in CHOICES:
        raise InvalidAmount(f"unknown bet choice: {choice}")
    if amount < min_bet or amount > max_bet:
        raise InvalidAmount(f"bet must be between {min_bet} and {max_bet}")


class BettingWindow:
    """
    One open betting period of the shared table.

    The bet list is the only stored state; stats() and every total are
    replayed from it, so a cancel can never leave stale aggregates.
    """

    def __init__(self, round_no: int, closes_at: datetime,
                 min_bet: int = BACCARAT_MIN_BET, max_bet: int = BACCARAT_MAX_BET):
        self.round_no = round_no
        self.closes_at = closes_at
        self.min_bet = min_bet
        self.max_bet = max_bet
        self.is_open = True
        self.bets: List[Bet] = []

    def check(self, choice: str, amount: int) -> None:
        if not self.is_open:
            raise InvalidStateTransition("betting is closed")
        check_bet(choice, amount, self.min_bet, self.max_bet)

    def place(self, bet: Bet) -> Bet:
        self.check(bet.choice, bet.amount)
        self.bets.append(bet)
        return bet

    def cancel_last(self, bettor_id) -> Bet:
        if not self.is_open:
            raise InvalidStateTransition("betting is closed")
        for i in range(len(self.bets) - 1, -1, -1):
            if self.bets[i].bettor_id == bettor_id:
                return self.bets.pop(i)
        raise NotFound("no bet to cancel")

    def close(self) -> List[Bet]:
        self.is_open = False
        return list(self.bets)

    def stats(self) -> Dict[str, Dict[str, int]]:
        out = {c: {"count": 0, "total_amount": 0, "bettor_count": 0} for c in CHOICES}
        bettors: Dict[str, set] = {c: set() for c in CHOICES}
        for b in self.bets:
            out[b.choice]["count"] += 1
            out[b.choice]["total_amount"] += b.amount
            bettors[b.choice].add(b.bettor_id)
        for c in CHOICES:
            out[c]["bettor_count"] = len(bettors[c])
        return out

    def bets_of(self, bettor_id) -> Dict[str, int]:
        mine = {c: 0 for c in CHOICES}
        for b in self.bets:
            if b.bettor_id == bettor_id:
                mine[b.choice] += b.amount
        return mine

    def total_amount(self) -> int:
        return sum(b.amount for b in self.bets)

    def bettor_count(self) -> int:
        return len({b.bettor_id for b in self.bets})

    def seconds_left(self, now: Optional[datetime] = None) -> int:
        if not self.is_open:
            return 0
        now = now or datetime.now(timezone.utc)
        return max(0, int((self.closes_at - now).total_seconds()))

    def status(self) -> Dict[str, Any]:
        return {
            "active": self.is_open,
            "round_no": self.round_no,
            "closes_at": self.closes_at.isoformat() if self.is_open else None,
            "seconds_left": self.seconds_left(),
            "stats": self.stats(),
        }
