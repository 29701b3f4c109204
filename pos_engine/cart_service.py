"""
Cart store for the live sale on a terminal.
"""
import logging
from typing import Dict, Iterator, List, Optional

from pos_engine.collaborators import CatalogGateway
from pos_engine.exceptions import NotFoundError, StockError, ValidationError
from pos_engine.models import CartLine, Customer, LineKey, Product, ProductVariant
from pos_engine.money import to_minor

logger = logging.getLogger(__name__)


class CartStore:
    """
    Owns the ordered cart lines for the active sale.

    Lines are keyed by (product id, variant id). Adding an item that already
    has a line increments that line. Stock checks are optimistic: the stock
    figure is read when the item is looked up and re-read on quantity updates
    when a catalog is available, but nothing is reserved. The backend performs
    the final check when the sale is created.
    """

    def __init__(self, catalog: Optional[CatalogGateway] = None, currency_exponent: int = 2):
        self.catalog = catalog
        self.currency_exponent = currency_exponent
        self._lines: Dict[LineKey, CartLine] = {}
        self.customer: Optional[Customer] = None

    @property
    def lines(self) -> List[CartLine]:
        """Cart lines in insertion order"""
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self.lines)

    def get_line(self, key: LineKey) -> Optional[CartLine]:
        return self._lines.get(key)

    @staticmethod
    def _item_stock(product: Product, variant: Optional[ProductVariant]) -> int:
        if variant is not None:
            return variant.stock_quantity or 0
        return product.stock_quantity or 0

    def add_item(self, product: Product, variant: Optional[ProductVariant] = None) -> CartLine:
        """
        Add one unit of a product (or one of its variants).

        Returns:
            The new or updated cart line
        """
        if variant is not None and variant.product_id != product.id:
            raise ValidationError(
                f"Variant {variant.id} does not belong to product {product.id}"
            )

        name = product.name if variant is None else f"{product.name} - {variant.name}"
        available = self._item_stock(product, variant)
        if available <= 0:
            raise StockError(name, 1, available)

        key: LineKey = (product.id, variant.id if variant else None)
        existing = self._lines.get(key)

        if existing is not None:
            new_quantity = existing.quantity + 1
            if new_quantity > available:
                raise StockError(name, new_quantity, available)
            existing.quantity = new_quantity
            existing.available_stock = available
            logger.debug("Incremented cart line", extra={"product_id": product.id, "quantity": new_quantity})
            return existing

        price = variant.selling_price if variant is not None else product.selling_price
        line = CartLine(
            product=product,
            variant=variant,
            quantity=1,
            unit_price=to_minor(price, self.currency_exponent),
            tax_rate=product.tax_rate or 0,
            available_stock=available,
        )
        self._lines[key] = line
        logger.info(f"{name} added to cart", extra={"product_id": product.id})
        return line

    def _current_stock(self, line: CartLine) -> int:
        """Re-read stock from the catalog, falling back to the last known figure"""
        if self.catalog is None:
            return line.available_stock

        if line.variant is not None:
            variants = self.catalog.get_variants_for_product(line.product.id)
            for variant in variants:
                if variant.id == line.variant.id:
                    return variant.stock_quantity or 0
            return 0

        product = self.catalog.get_product_by_id(line.product.id)
        return product.stock_quantity or 0

    def update_quantity(self, key: LineKey, quantity: int) -> Optional[CartLine]:
        """
        Overwrite a line's quantity.

        A quantity of zero or less removes the line and returns None.
        """
        if quantity <= 0:
            self.remove_item(key)
            return None

        line = self._lines.get(key)
        if line is None:
            raise NotFoundError("Cart line", key)

        available = self._current_stock(line)
        if quantity > available:
            raise StockError(line.display_name, quantity, available)

        line.quantity = quantity
        line.available_stock = available
        return line

    def remove_item(self, key: LineKey) -> bool:
        """Remove item from cart"""
        removed = self._lines.pop(key, None)
        return removed is not None

    def attach_customer(self, customer: Optional[Customer]) -> None:
        self.customer = customer

    def load(self, lines: List[CartLine], customer: Optional[Customer] = None) -> None:
        """Replace the cart contents with ``lines`` (used when resuming a parked sale)"""
        replacement: Dict[LineKey, CartLine] = {}
        for line in lines:
            if line.key in replacement:
                raise ValidationError(f"Duplicate cart line for {line.display_name}")
            replacement[line.key] = line
        self._lines = replacement
        self.customer = customer

    def clear(self) -> None:
        """Clear all items and detach the customer"""
        self._lines = {}
        self.customer = None
