from datetime import datetime, timedelta, timezone

import pytest

from baccarat.betting import CHOICES, Bet, BettingWindow
from util.errors import InvalidAmount, InvalidStateTransition, NotFound


def window() -> BettingWindow:
    return BettingWindow(1, datetime.now(timezone.utc) + timedelta(seconds=16), min_bet=1000, max_bet=500000)


def replay(bets, choice):
    rows = [b for b in bets if b.choice == choice]
    return {"count": len(rows), "total_amount": sum(b.amount for b in rows),
            "bettor_count": len({b.bettor_id for b in rows})}


class TestBettingWindow:
    def test_limits_and_choices(self):
        w = window()
        with pytest.raises(InvalidAmount):
            w.place(Bet(1, "player", 999))
        with pytest.raises(InvalidAmount):
            w.place(Bet(1, "player", 500001))
        with pytest.raises(InvalidAmount):
            w.place(Bet(1, "dragon", 1000))
        assert w.bets == []

    def test_closed_window_rejects(self):
        w = window()
        w.close()
        with pytest.raises(InvalidStateTransition):
            w.place(Bet(1, "player", 1000))
        assert w.status()["active"] is False

    def test_stats_match_replay(self):
        w = window()
        w.place(Bet(1, "player", 1000))
        w.place(Bet(1, "player", 2000))
        w.place(Bet(2, "player", 5000))
        w.place(Bet(2, "tie", 1000))
        w.place(Bet(3, "banker_pair", 3000))
        w.cancel_last(2)
        stats = w.stats()
        for c in CHOICES:
            assert stats[c] == replay(w.bets, c)
        assert stats["player"] == {"count": 3, "total_amount": 8000, "bettor_count": 2}
        assert stats["tie"]["count"] == 0

    def test_cancel_removes_latest_bet_of_that_bettor(self):
        w = window()
        w.place(Bet(1, "player", 1000))
        w.place(Bet(2, "banker", 4000))
        w.place(Bet(1, "tie", 2000))
        cancelled = w.cancel_last(1)
        assert (cancelled.choice, cancelled.amount) == ("tie", 2000)
        assert w.bets_of(1)["player"] == 1000
        assert w.total_amount() == 5000
        with pytest.raises(NotFound):
            w.cancel_last(9)

    def test_bets_of_accumulates(self):
        w = window()
        w.place(Bet(1, "banker", 1000))
        w.place(Bet(1, "banker", 1500))
        assert w.bets_of(1) == {"player": 0, "banker": 2500, "tie": 0, "player_pair": 0, "banker_pair": 0}
        assert w.bettor_count() == 1
