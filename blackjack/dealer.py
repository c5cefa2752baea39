# blackjack/dealer.py
import asyncio
from dataclasses import dataclass

from util.config import (DEALER_CARD_DELAY, DEALER_CHECK_DELAY, DEALER_FINISH_DELAY,
                         DEALER_REVEAL_DELAY)


@dataclass
class DealerPacing:
    """Cosmetic delays between dealer steps; results never depend on them."""
    reveal: float = DEALER_REVEAL_DELAY
    blackjack_check: float = DEALER_CHECK_DELAY
    per_card: float = DEALER_CARD_DELAY
    finish: float = DEALER_FINISH_DELAY

    @classmethod
    def zero(cls) -> "DealerPacing":
        return cls(0, 0, 0, 0)

    async def pause(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
