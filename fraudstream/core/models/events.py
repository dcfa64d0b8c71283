"""
Event data models for real-time fraud scoring.

These models define the records handed to the scoring core by the
surrounding transport layer: transactions to score and post-hoc
feedback labels.
"""

import math
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Channel(str, Enum):
    """Payment channel a transaction arrived through."""
    POS = "pos"
    ONLINE = "online"
    ATM = "atm"
    TRANSFER = "transfer"


class Transaction(BaseModel):
    """Transaction event scored by the fraud engine."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    amount: float  # positive for credit, negative for debit
    currency: Optional[str] = None
    timestamp: int  # milliseconds
    merchant: Optional[str] = None
    category: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    lon: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    device_id: Optional[str] = None
    channel: Optional[Channel] = None
    previous_balance: Optional[float] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator('amount')
    @classmethod
    def validate_amount(cls, v):
        if not math.isfinite(v):
            raise ValueError('Transaction amount must be finite')
        return v

    @property
    def abs_amount(self) -> float:
        return abs(self.amount)

    @property
    def has_geo(self) -> bool:
        return self.lat is not None and self.lon is not None


class FeedbackEvent(BaseModel):
    """Post-hoc label for a previously scored transaction."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(..., min_length=1)
    is_fraud: bool  # False marks the alert as a false positive
    category: Optional[str] = None
    notes: Optional[str] = None
    timestamp: int  # milliseconds
