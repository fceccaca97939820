import re
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal

from donation_ledger.core.currency import quantize_major


Provider = Literal["stripe", "paypal", "manual"]

SUCCESS_STATUSES = frozenset({"succeeded", "confirmed"})
REVERSAL_STATUSES = frozenset({"refunded"})

ANONYMOUS_DONOR_NAME = "Anonymous"

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_millis() -> int:
    return int(utc_now().timestamp() * 1000)


class Donor(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    is_anonymous: bool = False

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_blank(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @property
    def full_name(self) -> str:
        if self.is_anonymous:
            return ANONYMOUS_DONOR_NAME
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or ANONYMOUS_DONOR_NAME

    def to_item(self) -> dict:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "is_anonymous": self.is_anonymous,
        }


class DonationEvent(BaseModel):
    """What every event source hands to the aggregator."""
    campaign_id: str = Field(min_length=1)
    payment_ref: str = Field(min_length=1)
    provider: Provider
    status: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str
    donor: Donor | None = None
    message: str | None = None

    @field_validator("campaign_id", "payment_ref", mode="before")
    @classmethod
    def strip_ids(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, value):
        value = value.strip().upper() if isinstance(value, str) else value
        if not isinstance(value, str) or not CURRENCY_PATTERN.match(value):
            raise ValueError("currency must be a three-letter ISO 4217 code")
        return value

    @model_validator(mode="after")
    def quantize_amount(self):
        self.amount = quantize_major(self.amount, self.currency)
        if self.amount <= 0:
            raise ValueError("amount rounds to zero")
        return self

    @property
    def is_success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def is_reversal(self) -> bool:
        return self.status in REVERSAL_STATUSES

    @property
    def donor_name(self) -> str:
        return self.donor.full_name if self.donor else ANONYMOUS_DONOR_NAME


class PaymentRecord(BaseModel):
    payment_ref: str
    campaign_id: str
    provider: Provider
    status: str
    amount: Decimal
    currency: str
    donor: dict | None = None
    counted: bool = False
    refunded: bool = False  # terminal: never counted again
    counted_amount: Decimal | None = None
    counted_at: int | None = None
    donation_id: str | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def donor_name(self) -> str:
        if self.donor and self.donor.get("full_name"):
            return self.donor["full_name"]
        return ANONYMOUS_DONOR_NAME


class DonationDetail(BaseModel):
    donation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    campaign_id: str
    donor_name: str
    amount: Decimal
    currency: str
    status: Literal["confirmed", "refunded"] = "confirmed"
    method: Provider
    payment_ref: str
    message: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    confirmed_at: datetime | None = None
