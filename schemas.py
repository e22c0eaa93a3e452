from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from services.couriers.common import Address, Package, Quote

class QuoteRequest(BaseModel):
    origin: Address
    destination: Address
    packages: List[Package]
    services: Optional[str] = None
    receipt: bool = False
    own_hand: bool = False

class BatchQuoteRequest(BaseModel):
    # Storefront-shaped orders (Shopify GraphQL nodes)
    orders: List[Dict[str, Any]] = Field(..., min_length=1)
    from_postal_code: Optional[str] = None

class RecommendedService(BaseModel):
    carrier_service_id: int
    service_name: str
    price: Decimal
    difference: Decimal

class OrderQuotes(BaseModel):
    order_id: Optional[Any] = None
    order_name: Optional[str] = None
    shipping_paid_by_customer: Decimal
    quotes: List[Quote] = []
    recommended_service: Optional[RecommendedService] = None
    error: Optional[str] = None

class BatchQuoteSummary(BaseModel):
    total_orders: int
    successful_calculations: int
    total_shipping_paid: Decimal

class BatchQuoteResponse(BaseModel):
    results: List[OrderQuotes]
    summary: BatchQuoteSummary

class SelectedQuote(Quote):
    # Echoed back from a quote answer; no default, so stale quotes cannot pass as fresh ones
    quoted_at: datetime

class PurchaseLabelRequest(BaseModel):
    quote: SelectedQuote

class LabelRead(BaseModel):
    id: int
    order_id: int
    carrier_order_id: str
    carrier_service_id: int
    service_name: Optional[str]
    tracking_code: Optional[str]
    price: Decimal
    currency: str
    status: str
    last_carrier_status: Optional[str] = None
    created_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True) # Lets pydantic read straight from SQLAlchemy objects

class PrintUrl(BaseModel):
    label_id: int
    url: str

class TrackingSyncResult(BaseModel):
    checked: int
    updated: int

class OAuthCodeRequest(BaseModel):
    code: str
    account_key: str = "default"
