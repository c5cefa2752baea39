import asyncio

import pytest

from baccarat.betting import Bet
from baccarat.logic import deal_round
from baccarat.settlement import SettlementEngine, payout_for, settle_bets
from util.ledger import PendingCredits

from conftest import stacked

PLAYER_WIN = "9♥ 8♣ 10♦ 10♠"        # 9 vs 8
BANKER_WIN = "8♥ 9♣ 10♦ 10♠"        # 8 vs 9
TIE_WITH_PAIRS = "4♥ 4♣ 4♦ 4♠"      # 8 vs 8, both pairs


@pytest.mark.parametrize("deck,choice,amount,expected", [
    (PLAYER_WIN, "player", 1000, (2000, "win")),
    (PLAYER_WIN, "banker", 1000, (0, "lose")),
    (BANKER_WIN, "banker", 1000, (1950, "win")),
    (BANKER_WIN, "banker", 1001, (1951, "win")),
    (TIE_WITH_PAIRS, "tie", 1000, (9000, "win")),
    (TIE_WITH_PAIRS, "player", 1000, (1000, "push")),
    (TIE_WITH_PAIRS, "banker", 3000, (3000, "push")),
    (TIE_WITH_PAIRS, "player_pair", 1000, (12000, "win")),
    (TIE_WITH_PAIRS, "banker_pair", 2000, (24000, "win")),
    (PLAYER_WIN, "player_pair", 1000, (0, "lose")),
    (PLAYER_WIN, "tie", 1000, (0, "lose")),
])
def test_odds_table(deck, choice, amount, expected):
    assert payout_for(choice, amount, deal_round(stacked(deck))) == expected


def test_same_choice_bets_are_paid_once():
    rnd = deal_round(stacked(BANKER_WIN))
    bets = [Bet(1, "banker", 333), Bet(1, "banker", 333), Bet(1, "banker", 333)]
    payouts = settle_bets(bets, rnd)
    assert len(payouts) == 1
    assert payouts[0].amount == 999
    assert payouts[0].payout == 999 * 195 // 100


def test_engine_credits_once_per_bettor(ledger, emitter):
    rnd = deal_round(stacked(TIE_WITH_PAIRS))
    bets = [Bet(1, "tie", 1000, "amy"), Bet(1, "player", 2000, "amy"), Bet(1, "player", 1000, "amy"),
            Bet(2, "banker_pair", 1000, "bo")]
    engine = SettlementEngine(PendingCredits(ledger), emitter)

    summary = asyncio.run(engine.settle(7, rnd, bets))

    assert ledger.balances[1] == 10000 + 9000 + 3000
    assert ledger.balances[2] == 10000 + 12000
    assert [a for a in ledger.adjustments if a[0] == 1] == [(1, 12000)]
    assert summary["total_paid"] == 24000
    wins = emitter.named("bet_won")
    assert sorted((w["user_id"], w["choice"]) for w in wins) == [(1, "tie"), (2, "banker_pair")]
    assert len(ledger.history[1]) == 2
    assert {r["result"] for r in ledger.history[1]} == {"win", "push"}
    assert emitter.named("round_settled")[0]["result"] == "tie"


def test_failed_credit_is_queued_and_retried(ledger, emitter):
    rnd = deal_round(stacked(PLAYER_WIN))
    credits = PendingCredits(ledger)
    engine = SettlementEngine(credits, emitter)
    ledger.fail_credits = True

    asyncio.run(engine.settle(1, rnd, [Bet(1, "player", 1000)]))
    assert ledger.balances[1] == 10000
    assert len(credits) == 1

    ledger.fail_credits = False
    assert asyncio.run(credits.flush()) == 1
    assert ledger.balances[1] == 12000
    assert len(credits) == 0


def test_refund_returns_all_stakes(ledger, emitter):
    engine = SettlementEngine(PendingCredits(ledger), emitter)
    total = asyncio.run(engine.refund(3, [Bet(1, "player", 1000), Bet(1, "tie", 2000), Bet(2, "banker", 1000)], "stopped"))
    assert total == 4000
    assert ledger.balances == {1: 13000, 2: 11000, 3: 10000}
    assert len(emitter.named("bets_refunded")) == 2


def test_every_bettor_is_credited_before_anyone_is_notified(ledger, emitter):
    class BrokenSocket(type(emitter)):
        async def to_user(self, user_id, event, payload):
            raise ConnectionError("socket gone")

    rnd = deal_round(stacked(PLAYER_WIN))
    engine = SettlementEngine(PendingCredits(ledger), BrokenSocket())
    bets = [Bet(1, "player", 1000), Bet(2, "player", 2000), Bet(3, "player", 3000)]

    with pytest.raises(ConnectionError):
        asyncio.run(engine.settle(4, rnd, bets))
    assert ledger.balances == {1: 12000, 2: 14000, 3: 16000}
    assert all(len(ledger.history[uid]) == 1 for uid in (1, 2, 3))


def test_refund_credits_all_before_notifying(ledger, emitter):
    class BrokenSocket(type(emitter)):
        async def to_user(self, user_id, event, payload):
            raise ConnectionError("socket gone")

    engine = SettlementEngine(PendingCredits(ledger), BrokenSocket())
    with pytest.raises(ConnectionError):
        asyncio.run(engine.refund(5, [Bet(1, "tie", 1000), Bet(2, "banker", 2000)], "table stopped"))
    assert ledger.balances[1] == 11000
    assert ledger.balances[2] == 12000
