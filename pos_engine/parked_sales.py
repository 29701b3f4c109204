"""
Parked sale manager: suspend the live cart and bring it back later.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from pos_engine import pricing
from pos_engine.cart_service import CartStore
from pos_engine.collaborators import ParkedSaleStore
from pos_engine.exceptions import CartEmptyError, InfrastructureError, SaleError
from pos_engine.models import (
    CartLine,
    ParkedSale,
    ParkedSaleItem,
    Product,
    ProductVariant,
    TerminalSettings,
)
from pos_engine.money import to_decimal

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ParkedSaleManager:
    """
    Snapshots a cart into a parked sale and restores it.

    Snapshots copy product and variant display fields so a parked sale still
    reads correctly after the catalog changes. Expiry is advisory: an expired
    parked sale can still be resumed.
    """

    def __init__(
        self,
        store: ParkedSaleStore,
        settings: Optional[TerminalSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.settings = settings or TerminalSettings()
        self.clock = clock

    @staticmethod
    def snapshot_line(line: CartLine) -> ParkedSaleItem:
        variant = line.variant
        return ParkedSaleItem(
            product_id=line.product.id,
            product_name=line.product.name,
            product_sku=line.product.sku,
            product_barcode=line.product.barcode,
            category_id=line.product.category_id,
            variant_id=variant.id if variant else None,
            variant_name=variant.name if variant else None,
            variant_sku=variant.sku if variant else None,
            quantity=line.quantity,
            price=line.unit_price,
            tax_rate=line.tax_rate,
        )

    def park(self, cart: CartStore, notes: str = "", discount: int = 0) -> ParkedSale:
        """
        Persist the cart as a parked sale and clear it.

        Raises:
            CartEmptyError: nothing to park
            InfrastructureError: the store rejected the write; the cart is kept
        """
        if cart.is_empty:
            raise CartEmptyError()

        lines = cart.lines
        parked_at = self.clock()
        customer = cart.customer
        parked = ParkedSale(
            items=[self.snapshot_line(line) for line in lines],
            customer_id=customer.id if customer else None,
            customer=customer,
            subtotal=pricing.subtotal(lines),
            tax_amount=pricing.tax(lines),
            discount_amount=discount,
            notes=(notes or "").strip(),
            parked_at=parked_at,
            expires_at=parked_at + timedelta(days=self.settings.parked_sale_ttl_days),
        )

        try:
            stored = self.store.create_parked_sale(parked)
        except SaleError:
            raise
        except Exception as e:
            raise InfrastructureError(f"Failed to park sale: {e}")

        cart.clear()
        logger.info(
            "Sale parked",
            extra={"parked_id": stored.id, "items": len(stored.items), "expires_at": stored.expires_at.isoformat()},
        )
        return stored

    def _stand_in_line(self, item: ParkedSaleItem) -> CartLine:
        # Stock is not re-validated at resume time
        stock = max(self.settings.resumed_stock_placeholder, item.quantity)
        price = to_decimal(item.price, self.settings.currency_exponent)
        product = Product(
            id=item.product_id,
            name=item.product_name or "Product",
            sku=item.product_sku or "",
            barcode=item.product_barcode or "",
            category_id=item.category_id,
            selling_price=price,
            stock_quantity=stock,
            tax_rate=item.tax_rate or Decimal("0"),
        )
        variant = None
        if item.variant_id is not None:
            variant = ProductVariant(
                id=item.variant_id,
                product_id=item.product_id,
                name=item.variant_name or "",
                sku=item.variant_sku or "",
                selling_price=price,
                stock_quantity=stock,
            )
        return CartLine(
            product=product,
            variant=variant,
            quantity=item.quantity,
            unit_price=item.price,
            tax_rate=item.tax_rate,
            available_stock=stock,
        )

    def resume(self, parked: ParkedSale, cart: CartStore) -> CartStore:
        """Rebuild the live cart from a parked sale, expired or not"""
        lines = [self._stand_in_line(item) for item in parked.items]
        cart.load(lines, parked.customer)

        now = self.clock()
        if parked.is_expired(now):
            logger.info("Resuming expired parked sale", extra={"parked_id": parked.id})
        else:
            logger.info("Parked sale resumed", extra={"parked_id": parked.id})
        return cart

    def resume_by_id(self, parked_id: str, cart: CartStore) -> ParkedSale:
        parked = self.store.get_parked_sale(parked_id)
        self.resume(parked, cart)
        return parked

    def list(self) -> List[ParkedSale]:
        return self.store.list_parked_sales()

    def delete(self, parked_id: str) -> None:
        """Remove a parked sale permanently. Confirmation is the caller's job."""
        self.store.delete_parked_sale(parked_id)
        logger.info("Parked sale deleted", extra={"parked_id": parked_id})
