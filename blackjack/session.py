# blackjack/session.py
"""
每位玩家一個 21 點狀態機；純同步，不碰帳本與事件（見 blackjack/service.py）。
動作先驗證再修改，被拒絕的動作不會留下任何變動。
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from cards.deck import Card, Deck
from cards.scoring import hand_value, is_blackjack, split_value
from util.config import BLACKJACK_RESHUFFLE_POINT
from util.errors import (InsufficientFunds, InvalidAmount, InvalidStateTransition,
                         NotReady, ResourceExhausted)

HIDDEN = {"rank": "hidden", "suit": "hidden"}


class Status(str, Enum):
    WAITING = "waiting"
    BETTING = "betting"
    DEALING = "dealing"
    PLAYING = "playing"
    DEALER_TURN = "dealer-turn"
    FINISHED = "finished"


class Option(str, Enum):
    DOUBLE = "double"
    SPLIT = "split"
    INSURANCE = "insurance"
    SURRENDER = "surrender"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PlayerHand:
    cards: List[Card]
    bet: int
    doubled: bool = False
    done: bool = False
    busted: bool = False

    @property
    def value(self) -> int:
        return hand_value(self.cards)

    def to_dict(self) -> dict:
        return {
            "cards": [c.to_dict() for c in self.cards],
            "value": self.value,
            "bet": self.bet,
            "doubled": self.doubled,
            "done": self.done,
            "busted": self.busted,
        }


@dataclass
class InPlay:
    hands: List[PlayerHand]
    dealer: List[Card]  # [0] 暗牌, [1] 明牌
    options: Set[Option] = field(default_factory=set)
    index: int = 0
    insurance: int = 0
    split: bool = False
    player_blackjack: bool = False
    hole_revealed: bool = False

    @property
    def current(self) -> PlayerHand:
        return self.hands[self.index]

    @property
    def upcard(self) -> Card:
        return self.dealer[1]

    def staked(self) -> int:
        return sum(h.bet for h in self.hands) + self.insurance


@dataclass
class HandResult:
    index: int
    cards: List[Card]
    bet: int
    value: int
    result: str  # win | lose | push | blackjack | bust | surrender | void
    payout: int

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "cards": [c.to_dict() for c in self.cards],
            "bet": self.bet,
            "value": self.value,
            "result": self.result,
            "payout": self.payout,
        }


@dataclass
class Settlement:
    hands: List[PlayerHand]
    dealer: List[Card]
    results: List[HandResult]
    insurance: int = 0
    insurance_payout: int = 0
    insurance_result: str = "none"  # none | won | lost
    dealer_blackjack: bool = False
    split: bool = False
    error: Optional[str] = None

    @property
    def total_bet(self) -> int:
        return sum(r.bet for r in self.results) + self.insurance

    @property
    def total_payout(self) -> int:
        return sum(r.payout for r in self.results) + self.insurance_payout

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "dealer_hand": [c.to_dict() for c in self.dealer],
            "dealer_value": hand_value(self.dealer),
            "dealer_blackjack": self.dealer_blackjack,
            "insurance": self.insurance,
            "insurance_payout": self.insurance_payout,
            "insurance_result": self.insurance_result,
            "total_bet": self.total_bet,
            "total_payout": self.total_payout,
            "error": self.error,
        }


class BlackjackSession:
    def __init__(self, user_id, username: str, balance: int, deck: Optional[Deck] = None):
        self.user_id = user_id
        self.username = username
        self.balance = int(balance)
        self.status = Status.WAITING
        self.pending_bet = 0
        self.play: Optional[InPlay] = None
        self.outcome: Optional[Settlement] = None
        # 單副牌，只在兩手之間補牌
        self.deck = deck if deck is not None else Deck(1, BLACKJACK_RESHUFFLE_POINT, auto_regenerate=False)
        self.created_at = utc_now()
        self.game_started_at: Optional[datetime] = None
        self.game_ended_at: Optional[datetime] = None

    # ----- helpers -----

    def at_stake(self) -> int:
        if self.status is Status.BETTING:
            return self.pending_bet
        if self.play is not None:
            return self.play.staked()
        return 0

    def _require(self, *allowed: Status) -> None:
        if self.status not in allowed:
            names = " or ".join(s.value for s in allowed)
            raise InvalidStateTransition(f"not allowed while {self.status.value} (needs {names})")

    def _require_option(self, opt: Option) -> InPlay:
        self._require(Status.PLAYING)
        if opt not in self.play.options:
            raise InvalidStateTransition(f"{opt.value} is not available")
        return self.play

    def _draw(self) -> Card:
        return self.deck.draw()

    # ----- betting -----

    def place_bet(self, amount: int) -> None:
        self._require(Status.WAITING, Status.FINISHED)
        amount = int(amount)
        if amount <= 0:
            raise InvalidAmount("bet must be positive")
        if amount > self.balance + self.pending_bet:
            raise InsufficientFunds("insufficient balance")

        if self.status is Status.FINISHED:
            self.prepare_for_next_game()
        if self.pending_bet:
            # 上一手沒開局的注先退回
            self.balance += self.pending_bet
            self.pending_bet = 0
        self.balance -= amount
        self.pending_bet = amount
        self.status = Status.BETTING

    def start_game(self) -> None:
        if self.status is not Status.BETTING or self.pending_bet <= 0:
            raise NotReady("place a bet first")
        bet, self.pending_bet = self.pending_bet, 0
        self.status = Status.DEALING
        self.play = InPlay(hands=[PlayerHand([], bet)], dealer=[])
        self.outcome = None
        self.game_started_at = utc_now()
        self.game_ended_at = None

        try:
            hand = self.play.current
            hand.cards.append(self._draw())
            self.play.dealer.append(self._draw())  # 暗牌
            hand.cards.append(self._draw())
            self.play.dealer.append(self._draw())  # 明牌
        except ResourceExhausted as e:
            self._void(e.reason)
            return

        opts = {Option.SURRENDER}
        if self.balance >= bet:
            opts.add(Option.DOUBLE)
            if split_value(hand.cards[0]) == split_value(hand.cards[1]):
                opts.add(Option.SPLIT)
        if self.play.upcard.rank == "A" and self.balance >= bet // 2:
            opts.add(Option.INSURANCE)
        self.play.options = opts
        self.status = Status.PLAYING

    def check_blackjack(self) -> bool:
        self._require(Status.PLAYING)
        play = self.play
        if play.split or not is_blackjack(play.current.cards):
            return False
        play.player_blackjack = True
        play.current.done = True
        play.options.clear()
        self.status = Status.DEALER_TURN
        return True

    # ----- player actions -----

    def hit(self) -> Optional[Card]:
        self._require(Status.PLAYING)
        play = self.play
        hand = play.current
        try:
            card = self._draw()
        except ResourceExhausted as e:
            self._void(e.reason)
            return None
        hand.cards.append(card)
        play.options -= {Option.DOUBLE, Option.SPLIT, Option.SURRENDER}

        value = hand.value
        if value == 21:
            self._finish_current()
        elif value > 21:
            self._bust_current()
        return card

    def stand(self) -> None:
        self._require(Status.PLAYING)
        self._finish_current()

    def double(self) -> Optional[Card]:
        play = self._require_option(Option.DOUBLE)
        hand = play.current
        if self.balance < hand.bet:
            raise InsufficientFunds("insufficient balance to double")
        self.balance -= hand.bet
        hand.bet *= 2
        hand.doubled = True
        play.options.clear()
        try:
            card = self._draw()
        except ResourceExhausted as e:
            self._void(e.reason)
            return None
        hand.cards.append(card)
        # 加倍只拿一張，之後自動停牌
        if hand.value > 21:
            self._bust_current()
        else:
            self._finish_current()
        return card

    def insurance(self, amount: Optional[int] = None) -> int:
        play = self._require_option(Option.INSURANCE)
        if play.upcard.rank != "A":
            raise InvalidStateTransition("insurance needs a dealer ace")
        cap = play.hands[0].bet // 2
        amount = cap if amount is None else min(int(amount), cap)
        if amount <= 0:
            raise InvalidAmount("insurance amount must be positive")
        if self.balance < amount:
            raise InsufficientFunds("insufficient balance for insurance")
        self.balance -= amount
        play.insurance = amount
        play.options.discard(Option.INSURANCE)
        return amount

    def surrender(self) -> int:
        play = self._require_option(Option.SURRENDER)
        hand = play.current
        if play.split or len(hand.cards) != 2:
            raise InvalidStateTransition("surrender only on the first two cards")
        if is_blackjack(play.dealer):
            raise InvalidStateTransition("dealer has blackjack")
        half = hand.bet // 2
        hand.done = True
        self._finalize([HandResult(0, list(hand.cards), hand.bet, hand.value, "surrender", half)])
        return half

    def split(self) -> None:
        play = self._require_option(Option.SPLIT)
        first = play.current
        if self.balance < first.bet:
            raise InsufficientFunds("insufficient balance to split")
        self.balance -= first.bet
        second = PlayerHand([first.cards.pop()], first.bet)
        play.hands.append(second)
        play.split = True
        play.index = 0
        play.options -= {Option.SPLIT, Option.DOUBLE, Option.SURRENDER}
        try:
            first.cards.append(self._draw())
            second.cards.append(self._draw())
        except ResourceExhausted as e:
            self._void(e.reason)
            return None

    # ----- hand progression -----

    def _finish_current(self) -> None:
        play = self.play
        play.current.done = True
        self._advance()

    def _bust_current(self) -> None:
        play = self.play
        play.current.done = True
        play.current.busted = True
        if not play.split:
            self._finalize(self._hand_results(dealer_value=None))
            return
        self._advance()

    def _advance(self) -> None:
        play = self.play
        for i in range(play.index + 1, len(play.hands)):
            if not play.hands[i].done:
                play.index = i
                return
        if all(h.busted for h in play.hands):
            # 全部爆牌不必等莊家
            self._finalize(self._hand_results(dealer_value=None))
            return
        play.options.clear()
        self.status = Status.DEALER_TURN

    # ----- dealer turn -----

    def reveal_hole_card(self) -> Card:
        self._require(Status.DEALER_TURN)
        self.play.hole_revealed = True
        return self.play.dealer[0]

    def check_dealer_blackjack(self) -> bool:
        self._require(Status.DEALER_TURN)
        play = self.play
        play.hole_revealed = True
        dealer_bj = is_blackjack(play.dealer)
        if dealer_bj:
            self._finalize(self._dealer_blackjack_results())
        elif play.player_blackjack:
            h = play.hands[0]
            self._finalize([HandResult(0, list(h.cards), h.bet, h.value, "blackjack", h.bet * 5 // 2)])
        return dealer_bj

    def dealer_should_draw(self) -> bool:
        return self.status is Status.DEALER_TURN and hand_value(self.play.dealer) < 17

    def dealer_draw(self) -> Optional[Card]:
        self._require(Status.DEALER_TURN)
        if not self.dealer_should_draw():
            raise InvalidStateTransition("dealer stands")
        try:
            card = self._draw()
        except ResourceExhausted as e:
            self._void(e.reason)
            return None
        self.play.dealer.append(card)
        return card

    def determine_result(self, force: bool = False) -> Settlement:
        self._require(Status.DEALER_TURN)
        if not force and self.dealer_should_draw():
            raise NotReady("dealer is still drawing")
        play = self.play
        play.hole_revealed = True
        if is_blackjack(play.dealer):
            # 強制結算也要照莊家 21 點規則
            self._finalize(self._dealer_blackjack_results())
        else:
            self._finalize(self._hand_results(dealer_value=hand_value(play.dealer)))
        return self.outcome

    def _dealer_blackjack_results(self) -> List[HandResult]:
        play = self.play
        out = []
        for i, h in enumerate(play.hands):
            if play.player_blackjack:
                result, paid = "push", h.bet
            elif h.busted:
                result, paid = "bust", 0
            else:
                result, paid = "lose", 0
            out.append(HandResult(i, list(h.cards), h.bet, h.value, result, paid))
        return out

    def _hand_results(self, dealer_value: Optional[int]) -> List[HandResult]:
        play = self.play
        out = []
        for i, h in enumerate(play.hands):
            value = h.value
            if h.busted:
                result, paid = "bust", 0
            elif dealer_value is None:
                result, paid = "lose", 0
            elif play.player_blackjack:
                result, paid = "blackjack", h.bet * 5 // 2
            elif dealer_value > 21 or value > dealer_value:
                result, paid = "win", h.bet * 2
            elif value < dealer_value:
                result, paid = "lose", 0
            else:
                result, paid = "push", h.bet
            out.append(HandResult(i, list(h.cards), h.bet, value, result, paid))
        return out

    def _finalize(self, results: List[HandResult]) -> None:
        play = self.play
        dealer_bj = is_blackjack(play.dealer)
        ins_payout, ins_result = 0, "none"
        if play.insurance:
            # 保險 2:1，含本金共 3 倍
            ins_payout, ins_result = (play.insurance * 3, "won") if dealer_bj else (0, "lost")
        self.outcome = Settlement(
            hands=play.hands,
            dealer=play.dealer,
            results=results,
            insurance=play.insurance,
            insurance_payout=ins_payout,
            insurance_result=ins_result,
            dealer_blackjack=dealer_bj,
            split=play.split,
        )
        self.balance += self.outcome.total_payout
        self.play = None
        self.status = Status.FINISHED
        self.game_ended_at = utc_now()

    def _void(self, reason: str) -> None:
        """Deck ran dry mid-hand: every stake goes back and the hand ends flagged."""
        play = self.play
        results = [HandResult(i, list(h.cards), h.bet, h.value, "void", h.bet) for i, h in enumerate(play.hands)]
        self.outcome = Settlement(
            hands=play.hands,
            dealer=play.dealer,
            results=results,
            insurance=play.insurance,
            insurance_payout=play.insurance,
            split=play.split,
            error=reason,
        )
        self.balance += self.outcome.total_payout
        self.play = None
        self.status = Status.FINISHED
        self.game_ended_at = utc_now()
        self.deck.regenerate()

    # ----- next hand -----

    def prepare_for_next_game(self) -> None:
        if self.status in (Status.PLAYING, Status.DEALER_TURN, Status.DEALING):
            raise InvalidStateTransition("hand still in progress")
        if self.pending_bet:
            self.balance += self.pending_bet
            self.pending_bet = 0
        self.play = None
        self.outcome = None
        self.game_started_at = None
        self.game_ended_at = None
        self.deck.replenish()

    def new_game(self) -> None:
        self.prepare_for_next_game()
        self.status = Status.WAITING

    # ----- checkpoint -----

    def checkpoint(self) -> tuple:
        state = {k: v for k, v in self.__dict__.items() if k != "deck"}
        return copy.deepcopy(state), list(self.deck.cards)

    def restore(self, saved: tuple) -> None:
        state, cards = saved
        self.__dict__.update(copy.deepcopy(state))
        self.deck.cards = list(cards)

    # ----- view -----

    def options(self) -> List[str]:
        if self.status is not Status.PLAYING:
            return []
        return sorted(o.value for o in self.play.options)

    def snapshot(self) -> Dict[str, Any]:
        snap: Dict[str, Any] = {
            "user_id": self.user_id,
            "username": self.username,
            "status": self.status.value,
            "balance": self.balance,
            "current_bet": 0,
            "insurance_bet": 0,
            "player_hands": [],
            "current_hand_index": 0,
            "is_split": False,
            "dealer_hand": [],
            "dealer_value": 0,
            "options": self.options(),
            "player_blackjack": False,
            "result": None,
            "deck_remaining": self.deck.remaining,
        }
        if self.status is Status.BETTING:
            snap["current_bet"] = self.pending_bet
        elif self.play is not None:
            play = self.play
            snap.update({
                "current_bet": sum(h.bet for h in play.hands),
                "insurance_bet": play.insurance,
                "player_hands": [h.to_dict() for h in play.hands],
                "current_hand_index": play.index,
                "is_split": play.split,
                "player_blackjack": play.player_blackjack,
            })
            if play.hole_revealed:
                snap["dealer_hand"] = [c.to_dict() for c in play.dealer]
                snap["dealer_value"] = hand_value(play.dealer)
            else:
                # 暗牌只在伺服器端保留
                snap["dealer_hand"] = [dict(HIDDEN)] + [c.to_dict() for c in play.dealer[1:]]
                snap["dealer_value"] = hand_value(play.dealer[1:])
        elif self.outcome is not None:
            out = self.outcome
            snap.update({
                "current_bet": sum(h.bet for h in out.hands),
                "insurance_bet": out.insurance,
                "player_hands": [h.to_dict() for h in out.hands],
                "is_split": out.split,
                "dealer_hand": [c.to_dict() for c in out.dealer],
                "dealer_value": hand_value(out.dealer),
                "result": out.to_dict(),
            })
        return snap
