"""
Sale session for one terminal: wires the resolver, cart, pricing, payment and
parked-sale components to the backend collaborators.
"""
import hashlib
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from pydantic import BaseModel, Field

from pos_engine import pricing
from pos_engine.cart_service import CartStore
from pos_engine.collaborators import CatalogGateway, LoyaltyGateway, ParkedSaleStore, SalesGateway
from pos_engine.exceptions import (
    CartEmptyError,
    InfrastructureError,
    NotFoundError,
    OperationInProgressError,
    SaleError,
    ValidationError,
)
from pos_engine.models import (
    CartLine,
    Customer,
    FinalizedSale,
    LineKey,
    ParkedSale,
    PaymentMethod,
    PaymentSplit,
    PricingSummary,
    Product,
    ProductVariant,
    Receipt,
    TerminalSettings,
)
from pos_engine.parked_sales import ParkedSaleManager
from pos_engine.payment_service import PaymentProcessor
from pos_engine.variant_resolver import ResolutionKind, VariantResolver

logger = logging.getLogger(__name__)


def hash_identifier(identifier: str) -> str:
    """Hash identifier for logging (no PII)"""
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


class ScanResult(BaseModel):
    """What a scan did: added a line, or needs a variant picked first"""
    line: Optional[CartLine] = None
    product: Optional[Product] = None
    variants: List[ProductVariant] = Field(default_factory=list)

    @property
    def needs_variant(self) -> bool:
        return self.line is None


class SaleSession:
    """Live sale state for one terminal"""

    def __init__(
        self,
        catalog: CatalogGateway,
        loyalty: LoyaltyGateway,
        sales: SalesGateway,
        parked_store: ParkedSaleStore,
        settings: Optional[TerminalSettings] = None,
        parked_manager: Optional[ParkedSaleManager] = None,
    ):
        self.settings = settings or TerminalSettings()
        self.catalog = catalog
        self.loyalty = loyalty
        self.sales = sales
        self.cart = CartStore(catalog=catalog, currency_exponent=self.settings.currency_exponent)
        self.resolver = VariantResolver(catalog)
        self.payments = PaymentProcessor(self.settings)
        self.parked = parked_manager or ParkedSaleManager(parked_store, self.settings)
        self.loyalty_discount = 0
        # Held for the whole of a payment, park or resume
        self._lock = threading.Lock()
        # Serializes every read-modify-write of the cart
        self._state_lock = threading.RLock()
        self._operation: Optional[str] = None

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        """Only one payment, park or resume may be in flight at a time"""
        if not self._lock.acquire(blocking=False):
            raise OperationInProgressError(self._operation or operation)
        self._operation = operation
        try:
            with self._state_lock:
                yield
        finally:
            self._operation = None
            self._lock.release()

    @contextmanager
    def _mutating(self, operation: str) -> Iterator[None]:
        """
        Guard a cart change.

        Changes are refused while a payment, park or resume is in flight, so
        nothing can be added to a cart that is about to be cleared.
        """
        if self._lock.locked():
            raise OperationInProgressError(self._operation or operation)
        with self._state_lock:
            yield

    # Cart building

    def scan(self, code: str) -> ScanResult:
        """
        Resolve a scanned or typed code and add it to the cart.

        Products with variants are not added; the caller gets the selectable
        variants back and finishes with ``select_variant``.
        """
        with self._mutating("scan"):
            return self._scan(code)

    def _scan(self, code: str) -> ScanResult:
        resolution = self.resolver.resolve(code)

        if resolution.kind == ResolutionKind.NOT_FOUND:
            raise NotFoundError("Product", code, message=resolution.message or "Product not found")

        if resolution.kind == ResolutionKind.VARIANT:
            line = self.cart.add_item(resolution.product, resolution.variant)
            return ScanResult(line=line, product=resolution.product)

        product = resolution.product
        if product.has_variants:
            return ScanResult(product=product, variants=self.resolver.variants_for_selection(product))

        return ScanResult(line=self.cart.add_item(product), product=product)

    def add_product(self, product: Product) -> ScanResult:
        with self._mutating("add item"):
            if product.has_variants:
                return ScanResult(product=product, variants=self.resolver.variants_for_selection(product))
            return ScanResult(line=self.cart.add_item(product), product=product)

    def select_variant(self, product: Product, variant: ProductVariant) -> CartLine:
        with self._mutating("add item"):
            return self.cart.add_item(product, variant)

    def update_quantity(self, key: LineKey, quantity: int) -> Optional[CartLine]:
        with self._mutating("update quantity"):
            line = self.cart.update_quantity(key, quantity)
            self._clamp_discount()
            return line

    def remove_item(self, key: LineKey) -> bool:
        with self._mutating("remove item"):
            removed = self.cart.remove_item(key)
            self._clamp_discount()
            return removed

    def clear(self) -> None:
        with self._mutating("clear"):
            self._reset_sale()

    def _reset_sale(self) -> None:
        self.cart.clear()
        self.loyalty_discount = 0

    # Customer and loyalty

    def lookup_customer(self, phone: str) -> Customer:
        with self._mutating("customer lookup"):
            customer = self.loyalty.get_customer_by_phone(phone.strip())
            self.cart.attach_customer(customer)
        logger.info("Customer attached", extra={"hashed_phone": hash_identifier(phone.strip())})
        return customer

    def detach_customer(self) -> None:
        with self._mutating("detach customer"):
            self.cart.attach_customer(None)
            self.loyalty_discount = 0

    def redeem_points(self, points: int) -> int:
        """Redeem the attached customer's points and apply the discount to this sale"""
        with self._mutating("redeem points"):
            return self._redeem_points(points)

    def _redeem_points(self, points: int) -> int:
        customer = self.cart.customer
        if customer is None:
            raise ValidationError("Attach a customer before redeeming points")
        if points <= 0:
            raise ValidationError("Points to redeem must be greater than zero")
        if points > customer.loyalty_points:
            raise ValidationError(
                f"Customer has only {customer.loyalty_points} points available"
            )
        if self.cart.is_empty:
            raise CartEmptyError()

        discount = self.loyalty.redeem_points(customer.id, points)
        if discount < 0:
            raise InfrastructureError("Loyalty service returned a negative discount")
        self.loyalty_discount = min(discount, pricing.total(self.cart.lines))
        logger.info("Loyalty discount applied", extra={"points": points, "discount": self.loyalty_discount})
        return self.loyalty_discount

    def _clamp_discount(self) -> None:
        if self.cart.is_empty:
            self.loyalty_discount = 0
        else:
            self.loyalty_discount = min(self.loyalty_discount, pricing.total(self.cart.lines))

    # Totals

    def summary(self) -> PricingSummary:
        return pricing.summarize(self.cart.lines, self.loyalty_discount)

    def payable_total(self) -> int:
        return pricing.payable_total(self.cart.lines, self.loyalty_discount)

    # Payment

    def _submit(self, sale: FinalizedSale) -> Receipt:
        """Hand a validated sale to the backend exactly once"""
        try:
            receipt_id = self.sales.create_sale(sale)
        except InfrastructureError:
            logger.error("Sale creation failed; cart kept for retry")
            raise
        except SaleError as e:
            logger.error("Sale creation rejected; cart kept for retry")
            raise InfrastructureError(f"Failed to create sale: {e}")

        self._reset_sale()
        self.payments.reset()
        logger.info("Sale completed", extra={"receipt_id": receipt_id, "total": sale.total})
        return Receipt(receipt_id=receipt_id, sale=sale)

    def _customer_id(self) -> Optional[int]:
        return self.cart.customer.id if self.cart.customer else None

    def pay(self, method: PaymentMethod, cash_received: Optional[str] = None) -> Receipt:
        with self._exclusive("payment"):
            sale = self.payments.pay_single(
                self.cart.lines,
                method,
                self.payable_total(),
                cash_received=cash_received,
                discount=self.loyalty_discount,
                customer_id=self._customer_id(),
            )
            return self._submit(sale)

    def default_splits(self) -> List[PaymentSplit]:
        return self.payments.default_splits(self.payable_total())

    def pay_split(self, splits: Sequence[PaymentSplit]) -> Receipt:
        with self._exclusive("payment"):
            sale = self.payments.pay_split(
                self.cart.lines,
                splits,
                self.payable_total(),
                discount=self.loyalty_discount,
                customer_id=self._customer_id(),
            )
            return self._submit(sale)

    # Parked sales

    def park(self, notes: str = "") -> ParkedSale:
        with self._exclusive("park"):
            parked = self.parked.park(self.cart, notes, discount=self.loyalty_discount)
            self.loyalty_discount = 0
            return parked

    def resume(self, parked_id: str) -> ParkedSale:
        """Replace the live cart with a parked sale. The loyalty discount starts at zero."""
        with self._exclusive("resume"):
            parked = self.parked.resume_by_id(parked_id, self.cart)
            self.loyalty_discount = 0
            return parked

    def list_parked(self) -> List[ParkedSale]:
        return self.parked.list()

    def delete_parked(self, parked_id: str) -> None:
        self.parked.delete(parked_id)
