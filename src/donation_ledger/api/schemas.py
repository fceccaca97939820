from pydantic import AwareDatetime, BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import Annotated, Literal, Optional, Union
from datetime import datetime
from decimal import Decimal

from donation_ledger.models.campaign import CampaignStatus
from donation_ledger.models.donation import Donor

CURRENCY_PATTERN = r"^[A-Za-z]{3}$"


class DonationIntentRequest(BaseModel):
    campaign_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    donor: Optional[Donor] = None
    email: Optional[EmailStr] = None

class DonationIntentResponse(BaseModel):
    client_secret: str
    payment_intent_id: str
    amount: float
    currency: str

class PayPalOrderRequest(BaseModel):
    campaign_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    donor: Optional[Donor] = None

class PayPalOrderResponse(BaseModel):
    order_id: str
    approve_url: Optional[str] = None
    amount: float
    currency: str

class StripeConfirmation(BaseModel):
    provider: Literal["stripe"]
    payment_intent_id: str = Field(min_length=1)
    campaign_id: Optional[str] = None

class PayPalConfirmation(BaseModel):
    provider: Literal["paypal"]
    order_id: str = Field(min_length=1)
    campaign_id: Optional[str] = None
    donor: Optional[Donor] = None

DonationConfirmation = Annotated[
    Union[StripeConfirmation, PayPalConfirmation],
    Field(discriminator="provider")
]

class ManualDonationRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    currency: str = Field(pattern=CURRENCY_PATTERN)
    donor: Optional[Donor] = None
    message: Optional[str] = Field(default=None, max_length=2000)
    payment_ref: Optional[str] = None
    status: Literal["confirmed", "pending", "failed"] = "confirmed"

class AggregationResponse(BaseModel):
    outcome: str
    payment_ref: str
    campaign_id: str
    total_donated: float
    donors_count: int
    donation_id: Optional[str] = None

class WebhookResponse(BaseModel):
    received: bool = True
    outcome: Optional[str] = None

class CampaignCreateRequest(BaseModel):
    campaign_id: str = Field(pattern=r"^[a-z0-9][a-z0-9-]{0,99}$")
    title: str = Field(min_length=1, max_length=200)
    goal_amount: Decimal = Field(gt=0)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)
    status: CampaignStatus = "draft"
    start_at: Optional[AwareDatetime] = None
    end_at: Optional[AwareDatetime] = None

class CampaignUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    goal_amount: Optional[Decimal] = Field(default=None, gt=0)
    start_at: Optional[AwareDatetime] = None
    end_at: Optional[AwareDatetime] = None

class CampaignStatusRequest(BaseModel):
    status: CampaignStatus

class DonorEntryResponse(BaseModel):
    name: str
    amount: float
    at: int

class CampaignResponse(BaseModel):
    campaign_id: str
    title: str
    status: CampaignStatus
    currency: str
    goal_amount: float
    total_donated: float
    donors_count: int
    last_donors: list[DonorEntryResponse]
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None

class CognitoUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sub: str  # The unique user ID from Cognito
    email: EmailStr
    email_verified: bool
    name: Optional[str] = None
    groups: list[str] = Field(default_factory=list, alias="cognito:groups")

    @field_validator("groups", mode="before")
    @classmethod
    def split_groups(cls, value):
        # API Gateway flattens claims to strings, e.g. "[admin editors]" or "admin,editors".
        if isinstance(value, str):
            return [g for g in value.strip("[]").replace(",", " ").split() if g]
        return value
