# cards/scoring.py
from typing import Optional, Sequence

from cards.deck import Card

# --- 百家樂點數（10/J/Q/K 都算 0，A=1，2~9 其面值；逐張累加取 %10） ---

def baccarat_value(card: Card) -> int:
    if card.rank in ("10", "J", "Q", "K"):
        return 0
    if card.rank == "A":
        return 1
    return int(card.rank)


def baccarat_total(cards: Sequence[Card]) -> int:
    total = 0
    for c in cards:
        total = (total + baccarat_value(c)) % 10
    return total


def is_natural(cards: Sequence[Card]) -> bool:
    return len(cards) == 2 and baccarat_total(cards) >= 8


def is_pair(cards: Sequence[Card]) -> bool:
    # 只看起手兩張
    return len(cards) >= 2 and baccarat_value(cards[0]) == baccarat_value(cards[1])


def player_draws(player_total: int) -> bool:
    return player_total <= 5


def banker_draws(banker_total: int, player_third: Optional[Card]) -> bool:
    if banker_total <= 2:
        return True
    if banker_total >= 7:
        return False
    if player_third is None:
        # 閒家沒補牌，莊 <=5 補
        return banker_total <= 5
    v = baccarat_value(player_third)
    if banker_total == 3:
        return v != 8
    if banker_total == 4:
        return v in (2, 3, 4, 5, 6, 7)
    if banker_total == 5:
        return v in (4, 5, 6, 7)
    # banker_total == 6
    return v in (6, 7)


def compare(player_total: int, banker_total: int) -> str:
    if player_total > banker_total:
        return "player"
    if banker_total > player_total:
        return "banker"
    return "tie"


# --- 21 點 ---

def blackjack_value(card: Card) -> int:
    """Nominal value with aces counted as 11."""
    if card.rank == "A":
        return 11
    if card.rank in ("10", "J", "Q", "K"):
        return 10
    return int(card.rank)


def hand_value(cards: Sequence[Card]) -> int:
    total = 0
    aces = 0
    for c in cards:
        total += blackjack_value(c)
        if c.rank == "A":
            aces += 1
    # A 由 11 降為 1，直到不爆或沒有 A 可降
    while total > 21 and aces:
        total -= 10
        aces -= 1
    return total


def is_blackjack(cards: Sequence[Card]) -> bool:
    return len(cards) == 2 and hand_value(cards) == 21


def is_bust(cards: Sequence[Card]) -> bool:
    return hand_value(cards) > 21


def split_value(card: Card) -> int:
    return blackjack_value(card)
