from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, ForeignKey, Text, Index, text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

# Declarative base for the SQLAlchemy models
Base = declarative_base()

# Label statuses; the allowed transitions live in services/label_state.py
LABEL_PURCHASED = "PURCHASED"
LABEL_IN_TRANSIT = "IN_TRANSIT"
LABEL_DELIVERED = "DELIVERED"
LABEL_CANCELLED = "CANCELLED"

# ---------------------------------------------
# ORDERS (written by the storefront, read here)
# ---------------------------------------------

class Order(Base):
    """An order imported from the storefront."""
    __tablename__ = 'orders'
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, index=True)
    customer_name = Column(String)
    customer_email = Column(String)
    customer_phone = Column(String)
    customer_document = Column(String)
    total_price = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_paid = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, default="BRL")
    shipping_address1 = Column(String)
    shipping_address2 = Column(String)
    shipping_district = Column(String)
    shipping_city = Column(String)
    shipping_province = Column(String)
    shipping_zip = Column(String)
    created_at = Column(DateTime(timezone=True), default=func.now())
    line_items = relationship("LineItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")
    labels = relationship("Label", back_populates="order", cascade="all, delete-orphan")

class LineItem(Base):
    """A product inside an order."""
    __tablename__ = 'line_items'
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False)
    sku = Column(String, index=True)
    name = Column(String)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    order = relationship("Order", back_populates="line_items")

# ----------------------
# SHIPPING LABELS
# ----------------------

class Label(Base):
    """A shipping label bought from the carrier for one order."""
    __tablename__ = 'labels'
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey('orders.id'), nullable=False, index=True)
    carrier_order_id = Column(String, unique=True, nullable=False)
    carrier_service_id = Column(Integer, nullable=False)
    service_name = Column(String)
    tracking_code = Column(String, index=True)
    price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="BRL")
    status = Column(String, nullable=False, default=LABEL_PURCHASED)
    last_carrier_status = Column(String)
    created_at = Column(DateTime(timezone=True), default=func.now())
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime(timezone=True))
    order = relationship("Order", back_populates="labels")

    __table_args__ = (
        # At most one label per order that has not been cancelled.
        Index(
            'uq_labels_active_order', 'order_id', unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
    )

# ----------------------
# CARRIER CREDENTIALS
# ----------------------

class CarrierToken(Base):
    """Token state for a carrier account, kept across restarts."""
    __tablename__ = 'carrier_tokens'
    account_key = Column(String, primary_key=True)
    access_token = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    refresh_token = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now())
