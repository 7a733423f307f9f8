from __future__ import annotations

from pydantic import BaseModel


class CreditStatusResponse(BaseModel):
    userId: str
    used: int
    limit: int
    remaining: int
    reserved: int
