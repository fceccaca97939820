from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Literal

from donation_ledger.models.donation import utc_now


CampaignStatus = Literal["draft", "active", "paused", "closed"]


class DonorEntry(BaseModel):
    name: str
    amount: Decimal
    at: int  # epoch millis


class Campaign(BaseModel):
    campaign_id: str
    title: str
    goal_amount: Decimal
    currency: str
    status: CampaignStatus = "draft"
    start_at: datetime | None = None
    end_at: datetime | None = None

    # Maintained by the aggregator only
    total_donated: Decimal = Decimal("0")
    donors_count: int = 0
    last_donors: list[DonorEntry] = Field(default_factory=list)
    version: int = 0

    created_by: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
