import random
from collections import Counter

import pytest

from cards.deck import Card, Deck, fresh_cards, parse_card
from util.errors import ResourceExhausted

from conftest import cards


class TestDeck:
    def test_shuffle_is_a_permutation(self):
        deck = Deck(8, rng=random.Random(7))
        before = Counter(deck.cards)
        deck.shuffle()
        assert len(deck) == 8 * 52
        assert Counter(deck.cards) == before
        assert before == Counter(fresh_cards(8))

    def test_draw_pops_from_the_end(self):
        deck = Deck(1, rng=random.Random(1))
        last = deck.cards[-1]
        assert deck.draw() == last
        assert deck.remaining == 51

    def test_stacked_deals_in_order(self):
        deck = Deck.stacked(cards("9♥ 10♦ AS KC"))
        assert [str(deck.draw()) for _ in range(4)] == ["9♥", "10♦", "A♠", "K♣"]

    def test_regenerates_below_threshold(self):
        deck = Deck(1, reshuffle_threshold=10, auto_regenerate=True, rng=random.Random(3))
        deck.cards = deck.cards[:9]
        deck.draw()
        assert deck.remaining == 51

    def test_no_regeneration_runs_dry(self):
        deck = Deck.stacked(cards("2♠"))
        deck.draw()
        with pytest.raises(ResourceExhausted):
            deck.draw()

    def test_replenish_only_when_short(self):
        deck = Deck(1, reshuffle_threshold=20, auto_regenerate=False)
        assert deck.replenish() is False
        deck.cards = deck.cards[:19]
        assert deck.replenish() is True
        assert deck.remaining == 52

    def test_status(self):
        deck = Deck(8)
        assert deck.status() == {"remaining": 416, "decks_left": 8.0}
        deck.cards = deck.cards[:100]
        assert deck.status() == {"remaining": 100, "decks_left": 1.9}


def test_parse_card_accepts_letters():
    assert parse_card("10D") == Card("10", "♦")
    assert parse_card("a♠") == Card("A", "♠")
    with pytest.raises(ValueError):
        parse_card("1X")
