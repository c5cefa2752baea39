# baccarat/schema.py
from pydantic import BaseModel, Field


class BetBody(BaseModel):
    choice: str = Field(..., pattern="^(player|banker|tie|player_pair|banker_pair)$")
    amount: int = Field(..., ge=1)


class FixResultBody(BaseModel):
    outcome: str = Field(..., pattern="^(player|banker|tie)$")
    pattern: int = Field(1, ge=1)


class BackgroundBody(BaseModel):
    max_rounds: int = Field(..., ge=1)


class HistoryItem(BaseModel):
    round_no: int
    result: str
    player_score: int
    banker_score: int
    player_pair: bool = False
    banker_pair: bool = False
