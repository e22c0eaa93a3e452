# services/couriers/common.py

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, SecretStr


class Credentials(BaseModel):
    """Long-lived client credentials for one carrier account."""
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: SecretStr
    refresh_token: SecretStr


class AccessToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: SecretStr
    expires_at: datetime

    def is_expired(self, now: datetime, margin_seconds: int = 0) -> bool:
        return self.expires_at - timedelta(seconds=margin_seconds) <= now

    @property
    def bearer(self) -> str:
        return f"Bearer {self.value.get_secret_value()}"


class CompanyInfo(BaseModel):
    name: Optional[str] = None
    document: Optional[str] = None
    contract_number: Optional[str] = None


class Balance(BaseModel):
    amount: Decimal
    currency: str = "BRL"


class Address(BaseModel):
    model_config = ConfigDict(frozen=True)

    postal_code: str
    city: Optional[str] = None
    state_abbr: Optional[str] = None


class Package(BaseModel):
    """A single volume. Weight in kg, dimensions in cm."""
    model_config = ConfigDict(frozen=True)

    weight: Decimal
    height: Decimal
    width: Decimal
    length: Decimal
    insured_value: Decimal = Decimal("0")


class ShipmentRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: Address
    destination: Address
    packages: List[Package]
    services: Optional[str] = None
    receipt: bool = False
    own_hand: bool = False


class Quote(BaseModel):
    """A priced option returned by the carrier. Never stored until a label is bought with it."""
    model_config = ConfigDict(frozen=True)

    carrier_service_id: int
    service_name: str
    company_name: Optional[str] = None
    price: Decimal
    currency: str = "BRL"
    estimated_days: Optional[int] = None
    quoted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TrackingStatus(BaseModel):
    """
    The standard shape of a tracking answer from the carrier.
    """
    carrier_order_id: str
    raw_status: str
    tracking_code: Optional[str] = None
