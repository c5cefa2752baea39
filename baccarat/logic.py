# baccarat/logic.py
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

from cards.deck import Card, Deck, parse_cards
from cards.scoring import (baccarat_total, banker_draws, compare, is_natural,
                           is_pair, player_draws)
from util.config import BACCARAT_DECKS, BACCARAT_RESHUFFLE_POINT

OUTCOMES = ("player", "banker", "tie")


@dataclass(frozen=True)
class BaccaratRound:
    player_cards: Tuple[Card, ...]
    banker_cards: Tuple[Card, ...]
    player_score: int
    banker_score: int
    result: str
    player_pair: bool
    banker_pair: bool
    fixed: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def dealt(self) -> Iterator[Tuple[str, int, Card]]:
        """Cards in the order they came out of the shoe: P1 B1 P2 B2, then thirds."""
        for i in range(2):
            yield "player", i, self.player_cards[i]
            yield "banker", i, self.banker_cards[i]
        if len(self.player_cards) > 2:
            yield "player", 2, self.player_cards[2]
        if len(self.banker_cards) > 2:
            yield "banker", 2, self.banker_cards[2]

    def to_dict(self) -> dict:
        return {
            "player_cards": [c.to_dict() for c in self.player_cards],
            "banker_cards": [c.to_dict() for c in self.banker_cards],
            "player_score": self.player_score,
            "banker_score": self.banker_score,
            "result": self.result,
            "player_pair": self.player_pair,
            "banker_pair": self.banker_pair,
            "fixed": self.fixed,
            "timestamp": self.timestamp.isoformat(),
        }


def deal_round(deck: Deck, fixed: bool = False) -> BaccaratRound:
    """
    依百家樂規則發牌 & 補牌，整局同步跑完不中斷。
    起手 P1 B1 P2 B2；任一方 Natural 8/9 直接結束；否則閒先補、莊依表補。
    """
    p: List[Card] = []
    b: List[Card] = []
    for _ in range(2):
        p.append(deck.draw())
        b.append(deck.draw())

    if not (is_natural(p) or is_natural(b)):
        player_third: Optional[Card] = None
        if player_draws(baccarat_total(p)):
            player_third = deck.draw()
            p.append(player_third)
        if banker_draws(baccarat_total(b), player_third):
            b.append(deck.draw())

    pt = baccarat_total(p)
    bt = baccarat_total(b)
    return BaccaratRound(
        player_cards=tuple(p),
        banker_cards=tuple(b),
        player_score=pt,
        banker_score=bt,
        result=compare(pt, bt),
        player_pair=is_pair(p),
        banker_pair=is_pair(b),
        fixed=fixed,
    )


@dataclass(frozen=True)
class FixedPattern:
    player: Tuple[str, str]
    banker: Tuple[str, str]
    player_third: Optional[str] = None
    banker_third: Optional[str] = None
    description: str = ""

    def draw_order(self) -> List[Card]:
        order = [self.player[0], self.banker[0], self.player[1], self.banker[1]]
        if self.player_third:
            order.append(self.player_third)
        if self.banker_third:
            order.append(self.banker_third)
        return parse_cards(order)


# 指定結果用的牌組；每組都經過正常發牌規則算出同樣的結果
FIXED_PATTERNS: Dict[str, Dict[int, FixedPattern]] = {
    "player": {
        1: FixedPattern(("9♥", "10♦"), ("8♣", "10♠"), description="player natural 9 vs 8"),
        2: FixedPattern(("4♥", "A♦"), ("5♣", "2♥"), player_third="4♠",
                        description="player draws to 9, banker stands on 7"),
        3: FixedPattern(("6♥", "2♦"), ("4♣", "3♠"), description="player natural 8 vs 7"),
    },
    "banker": {
        1: FixedPattern(("8♥", "10♦"), ("9♣", "10♠"), description="banker natural 9 vs 8"),
        2: FixedPattern(("3♥", "2♦"), ("4♣", "A♥"), player_third="5♠", banker_third="2♦",
                        description="both draw, banker 7 vs 0"),
        3: FixedPattern(("2♥", "3♦"), ("7♣", "2♠"), description="banker natural 9 vs 5"),
    },
    "tie": {
        1: FixedPattern(("8♥", "10♦"), ("8♣", "10♠"), description="natural 8 tie"),
        2: FixedPattern(("A♥", "4♦"), ("3♣", "A♥"), player_third="2♠", banker_third="3♦",
                        description="both draw, tie 7-7"),
        3: FixedPattern(("3♥", "10♦"), ("2♣", "A♠"), player_third="10♠", banker_third="10♣",
                        description="both draw, tie 3-3"),
    },
}

DEFAULT_PATTERNS: Dict[str, FixedPattern] = {
    "player": FIXED_PATTERNS["player"][1],
    "banker": FixedPattern(("7♥", "10♦"), ("9♣", "10♠"), description="banker natural 9 vs 7"),
    "tie": FIXED_PATTERNS["tie"][1],
}


def fixed_pattern(outcome: str, pattern: int) -> FixedPattern:
    if outcome not in OUTCOMES:
        raise ValueError(f"unknown outcome: {outcome}")
    return FIXED_PATTERNS[outcome].get(pattern, DEFAULT_PATTERNS[outcome])


class BaccaratTable:
    """單桌共用牌靴：8 副牌，剩不到 104 張就整副重洗。"""

    def __init__(self, deck_count: int = BACCARAT_DECKS,
                 reshuffle_point: int = BACCARAT_RESHUFFLE_POINT,
                 rng: Optional[random.Random] = None):
        self.deck = Deck(deck_count, reshuffle_point, auto_regenerate=True, rng=rng)

    def play_round(self) -> BaccaratRound:
        return deal_round(self.deck)

    def play_fixed_round(self, outcome: str, pattern: int = 1) -> BaccaratRound:
        chosen = fixed_pattern(outcome, pattern)
        rnd = deal_round(Deck.stacked(chosen.draw_order()), fixed=True)
        if rnd.result != outcome:
            raise RuntimeError(f"fixed pattern {outcome}/{pattern} resolved as {rnd.result}")
        return rnd

    def deck_status(self) -> dict:
        return self.deck.status()

    def shuffle(self) -> dict:
        self.deck.regenerate()
        return self.deck.status()
