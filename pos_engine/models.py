"""
Pydantic models for catalog items, cart lines, payments, parked and finalized sales.

Money fields ending in ``_price``/``amount``/``subtotal``/``tax``/``total`` on
engine-owned models are integer minor units. Catalog models keep the backend's
Decimal prices; they are converted when a line is created.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# (product id, variant id or None)
LineKey = Tuple[int, Optional[int]]


class PaymentMethod(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    MOBILE_PAYMENT = "MOBILE_PAYMENT"
    STORE_CREDIT = "STORE_CREDIT"
    MIXED = "MIXED"


class _BackendModel(BaseModel):
    """Models exchanged with the REST backend use camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Product(_BackendModel):
    """Catalog product as returned by the backend"""
    id: int = Field(..., description="Product identifier")
    name: str = Field(..., description="Display name")
    sku: str = Field("", description="Stock keeping unit")
    barcode: Optional[str] = Field(None, description="Product barcode")
    category_id: Optional[int] = Field(None, description="Category identifier")
    selling_price: Decimal = Field(..., description="Current selling price")
    stock_quantity: int = Field(0, description="Available stock")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, description="Tax rate in percent")
    is_active: bool = Field(True, description="Whether the product can be sold")
    has_variants: bool = Field(False, description="Whether a variant must be chosen")


class ProductVariant(_BackendModel):
    """Sellable variant of a product (size, colour, ...)"""
    id: int = Field(..., description="Variant identifier")
    product_id: int = Field(..., description="Parent product identifier")
    name: str = Field(..., description="Variant name")
    sku: str = Field("", description="Variant SKU")
    barcode: Optional[str] = Field(None, description="Variant barcode")
    selling_price: Decimal = Field(..., description="Current selling price")
    stock_quantity: int = Field(0, description="Available stock")
    is_active: bool = Field(True, description="Whether the variant can be sold")


class Customer(_BackendModel):
    id: int = Field(..., description="Customer identifier")
    name: str = Field(..., description="Customer name")
    phone_number: Optional[str] = Field(None, description="Phone number")
    loyalty_points: int = Field(0, ge=0, description="Redeemable loyalty points")


class TerminalSettings(BaseModel):
    """Settings injected into pricing and payment calls"""
    currency_code: str = "USD"
    currency_symbol: str = "$"
    currency_exponent: int = Field(2, ge=0, le=4)
    enabled_payment_methods: List[PaymentMethod] = Field(
        default_factory=lambda: [
            PaymentMethod.CASH,
            PaymentMethod.CARD,
            PaymentMethod.MOBILE_PAYMENT,
            PaymentMethod.STORE_CREDIT,
        ]
    )
    max_payment_splits: int = Field(4, ge=1)
    parked_sale_ttl_days: int = Field(7, ge=0)
    resumed_stock_placeholder: int = Field(999, ge=0)

    @property
    def epsilon(self) -> int:
        """Tolerance for split sums, in minor units"""
        return 1


class CartLine(BaseModel):
    """One line in the live cart"""
    model_config = ConfigDict(validate_assignment=True)

    product: Product = Field(..., description="Product snapshot at add time")
    variant: Optional[ProductVariant] = Field(None, description="Chosen variant")
    quantity: int = Field(..., gt=0, description="Line quantity")
    unit_price: int = Field(..., ge=0, frozen=True, description="Price snapshot in minor units")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, frozen=True, description="Tax rate in percent")
    available_stock: int = Field(..., description="Stock known at last mutation")

    @property
    def key(self) -> LineKey:
        return (self.product.id, self.variant.id if self.variant else None)

    @property
    def subtotal(self) -> int:
        return self.quantity * self.unit_price

    @property
    def display_name(self) -> str:
        if self.variant:
            return f"{self.product.name} - {self.variant.name}"
        return self.product.name


class PaymentSplit(BaseModel):
    method: PaymentMethod = Field(..., description="Payment method")
    amount: int = Field(..., description="Amount in minor units")


class LineDiscount(BaseModel):
    """Share of the loyalty discount allocated to one cart line"""
    product_id: int
    variant_id: Optional[int] = None
    amount: int


class PricingSummary(BaseModel):
    subtotal: int
    tax: int
    total: int
    discount: int
    payable_total: int
    line_discounts: List[LineDiscount] = Field(default_factory=list)


class SaleLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: int
    variant_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: int
    tax_rate: Decimal
    subtotal: int
    discount: int = 0


class FinalizedSale(BaseModel):
    """Sale handed to the sales collaborator; immutable once built"""
    model_config = ConfigDict(frozen=True)

    lines: List[SaleLine]
    subtotal: int
    tax: int
    discount: int
    total: int
    payment_method: PaymentMethod
    payment_splits: List[PaymentSplit] = Field(default_factory=list)
    cash_received: Optional[int] = None
    change_due: int = 0
    customer_id: Optional[int] = None
    currency_code: str = "USD"


class Receipt(BaseModel):
    receipt_id: str
    sale: FinalizedSale


class ParkedSaleItem(BaseModel):
    """Denormalized line snapshot; readable without the live catalog"""
    product_id: int
    product_name: str = "Product"
    product_sku: str = ""
    product_barcode: Optional[str] = None
    category_id: Optional[int] = None
    variant_id: Optional[int] = None
    variant_name: Optional[str] = None
    variant_sku: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price: int = Field(..., ge=0, description="Unit price in minor units")
    tax_rate: Decimal = Decimal("0")


class ParkedSale(BaseModel):
    id: Optional[str] = Field(None, description="Assigned by the store")
    items: List[ParkedSaleItem]
    customer_id: Optional[int] = None
    customer: Optional[Customer] = None
    subtotal: int
    tax_amount: int
    discount_amount: int = 0
    notes: str = ""
    parked_at: datetime
    expires_at: datetime

    @field_validator("items")
    @classmethod
    def validate_items(cls, v: List[ParkedSaleItem]) -> List[ParkedSaleItem]:
        if not v:
            raise ValueError("A parked sale needs at least one item")
        return v

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def status_label(self, now: datetime) -> str:
        return "Expired (Still Resumable)" if self.is_expired(now) else "Active"

    def time_remaining(self, now: datetime) -> str:
        diff = self.expires_at - now
        if diff < timedelta(0):
            return "Expired"
        days = diff.days
        hours = diff.seconds // 3600
        if days > 0:
            return f"{days}d {hours}h"
        if hours > 0:
            return f"{hours}h"
        return "< 1h"


# HTTP request and response models. Amounts here are major units (Decimal).

class ScanRequest(BaseModel):
    code: str = Field(..., description="Scanned barcode or typed search text")


class AddProductRequest(BaseModel):
    product_id: int = Field(..., description="Product identifier")
    variant_id: Optional[int] = Field(None, description="Variant identifier")


class QuantityRequest(BaseModel):
    quantity: int = Field(..., description="New quantity; zero or less removes the line")


class CustomerRequest(BaseModel):
    phone: str = Field(..., min_length=1, description="Customer phone number")


class RedeemPointsRequest(BaseModel):
    points: int = Field(..., gt=0, description="Points to redeem")


class PaymentRequest(BaseModel):
    method: PaymentMethod = Field(..., description="CASH, CARD, ...")
    cash_received: Optional[str] = Field(None, description="Cash handed over, as typed")


class SplitRequest(BaseModel):
    method: PaymentMethod
    amount: Decimal = Field(..., description="Amount for this method")


class SplitPaymentRequest(BaseModel):
    splits: List[SplitRequest] = Field(..., description="Up to four payment splits")


class ParkRequest(BaseModel):
    notes: str = Field("", description="Free-text notes")


class CartLineResponse(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal
    subtotal: Decimal
    discount: Decimal


class SaleResponse(BaseModel):
    terminal_id: str
    customer: Optional[Customer] = None
    lines: List[CartLineResponse] = Field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    payable_total: Decimal = Decimal("0")
    currency_code: str = "USD"


class ScanResponse(BaseModel):
    added: bool
    sale: SaleResponse
    product: Optional[Product] = None
    variants: List[ProductVariant] = Field(default_factory=list)


class ReceiptResponse(BaseModel):
    receipt_id: str
    payment_method: PaymentMethod
    total: Decimal
    change_due: Decimal
    message: str


class ParkedSaleResponse(BaseModel):
    parked_sale: ParkedSale
    status: str
    time_remaining: str
