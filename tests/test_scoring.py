import itertools

import pytest

from cards.deck import RANKS, Card
from cards.scoring import (baccarat_total, banker_draws, hand_value, is_blackjack, is_bust,
                           is_natural, is_pair)

from conftest import cards


def third(value: int) -> Card:
    return Card("10" if value == 0 else ("A" if value == 1 else str(value)), "♠")


class TestBaccarat:
    def test_totals_stay_in_range(self):
        for a, b, c in itertools.product(RANKS, repeat=3):
            hand = [Card(a, "♠"), Card(b, "♥"), Card(c, "♦")]
            assert 0 <= baccarat_total(hand) <= 9

    def test_face_cards_count_zero(self):
        assert baccarat_total(cards("K♠ Q♥")) == 0
        assert baccarat_total(cards("9♥ 10♦")) == 9
        assert baccarat_total(cards("7♥ 8♦ A♣")) == 6

    def test_natural_and_pair(self):
        assert is_natural(cards("9♥ 10♦"))
        assert is_natural(cards("4♥ 4♦")) and is_pair(cards("4♥ 4♦"))
        assert not is_natural(cards("3♥ 3♦"))
        assert is_pair(cards("3♥ 3♦"))
        assert is_pair(cards("10♥ K♦"))
        assert not is_pair(cards("4♥ 5♦ 4♣"))

    @pytest.mark.parametrize("banker", [0, 1, 2])
    def test_banker_low_always_draws(self, banker):
        assert banker_draws(banker, None)
        assert all(banker_draws(banker, third(v)) for v in range(10))

    def test_banker_seven_stands(self):
        assert not banker_draws(7, None)
        assert not any(banker_draws(7, third(v)) for v in range(10))

    def test_player_stood(self):
        assert [banker_draws(t, None) for t in range(3, 7)] == [True, True, True, False]

    @pytest.mark.parametrize("banker,draws_on", [
        (3, {0, 1, 2, 3, 4, 5, 6, 7, 9}),
        (4, {2, 3, 4, 5, 6, 7}),
        (5, {4, 5, 6, 7}),
        (6, {6, 7}),
    ])
    def test_banker_rule_after_player_third(self, banker, draws_on):
        assert {v for v in range(10) if banker_draws(banker, third(v))} == draws_on


class TestBlackjack:
    def test_ace_demotion(self):
        assert hand_value(cards("A♠ A♥")) == 12
        assert hand_value(cards("A♠ 5♥ K♦")) == 16
        assert hand_value(cards("A♠ A♥ 9♦")) == 21
        assert hand_value(cards("A♠ A♥ A♦ A♣ 7♠")) == 21

    def test_blackjack_needs_two_cards(self):
        assert is_blackjack(cards("A♠ K♥"))
        assert not is_blackjack(cards("7♠ 7♥ 7♦"))

    def test_bust(self):
        assert is_bust(cards("K♠ Q♥ 5♦"))
        assert not is_bust(cards("A♠ Q♥ K♦"))

    def test_never_over_21_while_an_ace_can_drop(self):
        for ranks in itertools.product(["A", "5", "9", "K"], repeat=3):
            hand = [Card(r, "♠") for r in ranks]
            hard = sum(1 if r == "A" else (10 if r == "K" else int(r)) for r in ranks)
            if hard <= 21:
                assert hand_value(hand) <= 21
