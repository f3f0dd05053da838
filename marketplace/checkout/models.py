# module marketplace.checkout.models
"""Modèles du checkout (pydantic).
- Les lignes de panier sont immuables (frozen): toute correction passe par model_copy(update=...).
- Montants en cents (int), devise USD.
"""
from datetime import datetime
from typing import ClassVar, Literal, Optional, List, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

US_STATES = {
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
    "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
    "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
    "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
}

class Package(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    service_type: str = "unknown"
    name: str = "Unknown Package"
    base_price: int = Field(default=0, ge=0)
    premium_amount: int = 0
    travel_fee: int = 0

class Vendor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = "Unknown Vendor"
    stripe_account_id: Optional[str] = None

class Venue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = ""
    name: str = ""

class CartLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    package: Package
    vendor: Vendor = Field(default_factory=Vendor)
    venue: Optional[Venue] = None
    event_date: Optional[str] = None
    event_start_time: Optional[str] = None
    event_end_time: Optional[str] = None

    @property
    def line_total(self) -> int:
        return self.package.base_price + self.package.premium_amount + self.package.travel_fee

AdjustmentKind = Literal["percentage", "fixed"]
AdjustmentSource = Literal["discount", "referral"]

class AppliedAdjustment(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    kind: AdjustmentKind
    magnitude: int = Field(ge=0)
    source: AdjustmentSource = "discount"
    percent: Optional[float] = None
    source_vendor_name: Optional[str] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return (v or "").strip().upper()

class ContractSignature(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_type: str
    signed_name: str = Field(min_length=1)
    template_content: str
    signed_at: datetime

class CustomerDetails(BaseModel):
    partner1_name: str = ""
    partner2_name: str = ""
    email: str = ""
    phone: str = ""
    billing_address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    guest_count: Optional[str] = None
    special_requests: Optional[str] = None

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("partner1_name", "email", "phone", "billing_address", "city", "state", "zip_code")

    def missing_fields(self) -> List[str]:
        return [f for f in self.REQUIRED_FIELDS if not (getattr(self, f) or "").strip()]

    @property
    def couple_name(self) -> str:
        p1 = (self.partner1_name or "").strip()
        p2 = (self.partner2_name or "").strip()
        return f"{p1} & {p2}" if p2 else p1

    def billing_details(self) -> dict:
        """Format billing_details attendu par Stripe (PaymentMethod)."""
        return {
            "name": self.couple_name,
            "email": self.email.strip(),
            "phone": self.phone.strip(),
            "address": {
                "line1": self.billing_address.strip(),
                "city": self.city.strip(),
                "state": self.state.strip(),
                "postal_code": self.zip_code.strip(),
                "country": "US",
            },
        }

class PricingBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    line_item_count: int = 0
    subtotal: int = 0
    total_discount: int = 0
    discounted_total: int = 0
    deposit_amount: int = 0
    service_fee_total: int = 0
    grand_total: int = 0
    remaining_balance: int = 0

class PaymentIntentState(BaseModel):
    client_secret: str
    intent_id: str
    grand_total: int
    generation: int = 0
    booking_ids: List[str] = Field(default_factory=list)
    card_ready: bool = False
    card_complete: bool = False

class BookingRecord(BaseModel):
    """Ligne 'bookings' (lecture seule côté checkout)."""
    id: str
    status: Optional[str] = None
    service_type: Optional[str] = None
    amount: int = 0
    initial_payment: int = 0
    final_payment: int = 0
    stripe_payment_intent_id: Optional[str] = None

    @field_validator("amount", "initial_payment", "final_payment", mode="before")
    @classmethod
    def null_as_zero(cls, v):
        return v or 0
