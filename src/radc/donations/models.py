"""
Donation data models.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentMethod(str, Enum):
    CARD = "card"
    PAYPAL = "paypal"
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    MOBILE_MONEY = "mobile_money"


class DonationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class DonorLevel(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class Frequency(str, Enum):
    ONE_OFF = "one_off"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class Donation(BaseModel):
    """One donation, as recorded after payment or manual entry."""
    model_config = ConfigDict(frozen=True)

    id: str
    donor_id: str
    amount: Decimal = Field(gt=0)
    currency: str = "EUR"
    method: PaymentMethod
    status: DonationStatus = DonationStatus.COMPLETED
    donated_at: datetime
    project_id: Optional[str] = None
    campaign_id: Optional[str] = None
    external_reference: Optional[str] = None
    fee: Decimal = Field(default=Decimal("0"), ge=0)
    anonymous: bool = False
    public_message: Optional[str] = None
    tax_receipt: bool = False
    frequency: Frequency = Frequency.ONE_OFF

    @property
    def net_amount(self) -> Decimal:
        return self.amount - self.fee


class Donor(BaseModel):
    """Donor with running totals."""
    model_config = ConfigDict(frozen=True)

    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    uid: Optional[str] = None           # Linked identity, if the donor signed in
    total_given: Decimal = Decimal("0")
    donation_count: int = 0
    level: DonorLevel = DonorLevel.BRONZE
    last_donation_at: Optional[datetime] = None
    registered_at: datetime


class Campaign(BaseModel):
    """Fund-raising campaign."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    goal: Decimal = Field(gt=0)
    raised: Decimal = Decimal("0")
    donor_count: int = 0
    starts_at: datetime
    ends_at: datetime
    project_id: Optional[str] = None
