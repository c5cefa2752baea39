# cards/deck.py
import random
from dataclasses import dataclass
from typing import Iterable, List, Optional

from util.errors import ResourceExhausted

SUITS = ["♠", "♥", "♦", "♣"]
SUIT_LETTERS = {"S": "♠", "H": "♥", "D": "♦", "C": "♣"}  # 舊資料用字母存花色
RANKS = ["A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K"]


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    def __str__(self):
        return f"{self.rank}{self.suit}"

    def to_dict(self) -> dict:
        return {"rank": self.rank, "suit": self.suit}


def parse_card(text: str) -> Card:
    """'9♥' / '10D' / 'AS' -> Card"""
    text = text.strip()
    rank, suit = text[:-1].upper(), text[-1]
    suit = SUIT_LETTERS.get(suit.upper(), suit)
    if rank not in RANKS or suit not in SUITS:
        raise ValueError(f"bad card: {text!r}")
    return Card(rank, suit)


def parse_cards(texts: Iterable[str]) -> List[Card]:
    return [parse_card(t) for t in texts]


def fresh_cards(deck_count: int = 1) -> List[Card]:
    return [Card(r, s) for _ in range(deck_count) for s in SUITS for r in RANKS]


class Deck:
    """
    A shoe of `deck_count` standard decks, drawn from the end like a stack.

    With auto_regenerate the shoe is rebuilt and reshuffled before a draw
    whenever fewer than `reshuffle_threshold` cards remain (baccarat).
    Without it the caller replenishes between hands (blackjack) and an
    empty shoe raises ResourceExhausted.
    """

    def __init__(self, deck_count: int = 1, reshuffle_threshold: int = 0,
                 auto_regenerate: bool = True, rng: Optional[random.Random] = None):
        self.deck_count = deck_count
        self.reshuffle_threshold = reshuffle_threshold
        self.auto_regenerate = auto_regenerate
        self.rng = rng or random.SystemRandom()
        self.cards: List[Card] = []
        self.regenerate()

    @classmethod
    def stacked(cls, draw_order: Iterable[Card], deck_count: int = 1,
                reshuffle_threshold: int = 0, auto_regenerate: bool = False) -> "Deck":
        """Deck whose next draws come out exactly in `draw_order`."""
        deck = cls(deck_count, reshuffle_threshold, auto_regenerate)
        deck.cards = list(reversed(list(draw_order)))
        return deck

    def __len__(self):
        return len(self.cards)

    @property
    def remaining(self) -> int:
        return len(self.cards)

    def regenerate(self) -> None:
        self.cards = fresh_cards(self.deck_count)
        self.shuffle()

    def shuffle(self) -> None:
        # Fisher-Yates，就地洗牌
        cards = self.cards
        for i in range(len(cards) - 1, 0, -1):
            j = self.rng.randrange(i + 1)
            cards[i], cards[j] = cards[j], cards[i]

    def draw(self) -> Card:
        if self.auto_regenerate and len(self.cards) < self.reshuffle_threshold:
            self.regenerate()
        if not self.cards:
            raise ResourceExhausted("deck exhausted")
        return self.cards.pop()

    def replenish(self) -> bool:
        if len(self.cards) < self.reshuffle_threshold:
            self.regenerate()
            return True
        return False

    def status(self) -> dict:
        n = len(self.cards)
        return {"remaining": n, "decks_left": round(n / 52, 1)}
