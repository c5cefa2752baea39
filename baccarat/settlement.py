# baccarat/settlement.py
"""
Baccarat payouts.

Stakes are taken from the ledger when a bet is placed, so settlement only
ever credits. Bets are folded per (bettor, choice) before the odds table
is applied: five 1,000 bets on banker are paid exactly like one 5,000 bet,
and produce one notice.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from baccarat.betting import Bet
from baccarat.logic import BaccaratRound
from util.events import Emitter
from util.ledger import PendingCredits, history_record

logger = logging.getLogger(__name__)

# 倍率含本金；整數運算，一律無條件捨去
ODDS: Dict[str, Tuple[int, int]] = {
    "player": (2, 1),
    "banker": (195, 100),
    "tie": (9, 1),
    "player_pair": (12, 1),
    "banker_pair": (12, 1),
}


def wins(choice: str, rnd: BaccaratRound) -> bool:
    if choice == "player_pair":
        return rnd.player_pair
    if choice == "banker_pair":
        return rnd.banker_pair
    return rnd.result == choice


def payout_for(choice: str, amount: int, rnd: BaccaratRound) -> Tuple[int, str]:
    if wins(choice, rnd):
        num, den = ODDS[choice]
        return amount * num // den, "win"
    if choice in ("player", "banker") and rnd.result == "tie":
        return amount, "push"  # 和局退回本金
    return 0, "lose"


@dataclass
class Payout:
    bettor_id: Any
    username: str
    choice: str
    amount: int
    payout: int
    result: str


def aggregate(bets: Iterable[Bet]) -> Dict[Tuple[Any, str], Tuple[int, str]]:
    folded: Dict[Tuple[Any, str], Tuple[int, str]] = {}
    for b in bets:
        amount, username = folded.get((b.bettor_id, b.choice), (0, b.username))
        folded[(b.bettor_id, b.choice)] = (amount + b.amount, username or b.username)
    return folded


def settle_bets(bets: Iterable[Bet], rnd: BaccaratRound) -> List[Payout]:
    out = []
    for (bettor_id, choice), (amount, username) in aggregate(bets).items():
        paid, result = payout_for(choice, amount, rnd)
        out.append(Payout(bettor_id, username, choice, amount, paid, result))
    return out


class SettlementEngine:
    def __init__(self, credits: PendingCredits, emitter: Emitter):
        self.credits = credits
        self.emitter = emitter

    async def settle(self, round_no: int, rnd: BaccaratRound, bets: List[Bet]) -> Dict[str, Any]:
        payouts = settle_bets(bets, rnd)

        owed: Dict[Any, int] = {}
        for p in payouts:
            owed[p.bettor_id] = owed.get(p.bettor_id, 0) + p.payout

        # 每位下注者一次入帳；全部入帳完才通知
        landed: Dict[Any, int] = {}
        for bettor_id, total in owed.items():
            if total <= 0:
                continue
            balance = await self.credits.credit(bettor_id, total, f"baccarat round {round_no}")
            if balance is not None:
                landed[bettor_id] = balance

        for p in payouts:
            await self.credits.record(p.bettor_id, history_record(
                "baccarat", p.choice, p.amount, p.result,
                outcome=rnd.result, payout=p.payout, round_no=round_no,
                player_score=rnd.player_score, banker_score=rnd.banker_score,
            ))

        notices = [
            {"user_id": p.bettor_id, "username": p.username, "choice": p.choice,
             "amount": p.amount, "payout": p.payout}
            for p in payouts if p.result == "win"
        ]
        for bettor_id, balance in landed.items():
            await self.emitter.to_user(bettor_id, "balance_changed", {"balance": balance, "reason": "baccarat_payout"})
        for n in notices:
            await self.emitter.to_user(n["user_id"], "bet_won", n)
        await self.emitter.broadcast("round_settled", {"round_no": round_no, "result": rnd.result, "winners": notices})

        total_paid = sum(p.payout for p in payouts)
        logger.info("round %s settled: result=%s bets=%s paid=%s", round_no, rnd.result, len(payouts), total_paid)
        return {"round_no": round_no, "payouts": payouts, "total_paid": total_paid}

    async def refund(self, round_no: int, bets: List[Bet], reason: str) -> int:
        owed: Dict[Any, int] = {}
        for b in bets:
            owed[b.bettor_id] = owed.get(b.bettor_id, 0) + b.amount
        balances = {}
        for bettor_id, total in owed.items():
            balances[bettor_id] = await self.credits.credit(bettor_id, total, f"baccarat refund {round_no}: {reason}")
        for bettor_id, total in owed.items():
            balance = balances[bettor_id]
            await self.emitter.to_user(bettor_id, "bets_refunded", {"round_no": round_no, "amount": total, "reason": reason})
            if balance is not None:
                await self.emitter.to_user(bettor_id, "balance_changed", {"balance": balance, "reason": "baccarat_refund"})
        if owed:
            logger.info("round %s voided (%s): refunded %s bettors", round_no, reason, len(owed))
        return sum(owed.values())
