# blackjack/schema.py
from typing import Optional

from pydantic import BaseModel, Field


class BetBody(BaseModel):
    amount: int = Field(..., ge=1)


class InsuranceBody(BaseModel):
    amount: Optional[int] = Field(None, ge=1)  # 預設為注碼一半


class AdjustBody(BaseModel):
    user_id: int
    delta: int
