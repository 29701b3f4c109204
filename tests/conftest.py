"""
Shared fixtures: in-memory catalog, loyalty and sales collaborators.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from pos_engine.cart_service import CartStore
from pos_engine.exceptions import InfrastructureError, NotFoundError
from pos_engine.models import (
    CartLine,
    Customer,
    FinalizedSale,
    Product,
    ProductVariant,
    TerminalSettings,
)
from pos_engine.parked_sale_store import InMemoryParkedSaleStore
from pos_engine.parked_sales import ParkedSaleManager
from pos_engine.terminal import SaleSession


def make_product(product_id: int, price: str = "10.00", stock: int = 10, tax: str = "0", **kwargs) -> Product:
    defaults = dict(
        id=product_id,
        name=f"Product {product_id}",
        sku=f"SKU-{product_id}",
        barcode=str(1000 + product_id),
        category_id=1,
        selling_price=Decimal(price),
        stock_quantity=stock,
        tax_rate=Decimal(tax),
    )
    defaults.update(kwargs)
    return Product(**defaults)


def make_variant(variant_id: int, product_id: int, price: str = "12.00", stock: int = 5, **kwargs) -> ProductVariant:
    defaults = dict(
        id=variant_id,
        product_id=product_id,
        name=f"Variant {variant_id}",
        sku=f"VSKU-{variant_id}",
        barcode=str(9000 + variant_id),
        selling_price=Decimal(price),
        stock_quantity=stock,
    )
    defaults.update(kwargs)
    return ProductVariant(**defaults)


def make_line(product_id: int, unit_price: int, quantity: int = 1, tax: str = "0", variant_id: Optional[int] = None) -> CartLine:
    product = make_product(product_id, tax=tax, stock=quantity + 10)
    variant = make_variant(variant_id, product_id, stock=quantity + 10) if variant_id else None
    return CartLine(
        product=product,
        variant=variant,
        quantity=quantity,
        unit_price=unit_price,
        tax_rate=Decimal(tax),
        available_stock=quantity + 10,
    )


class FakeCatalog:
    def __init__(self):
        self.products: Dict[int, Product] = {}
        self.variants: Dict[int, ProductVariant] = {}
        self.fail_with: Optional[Exception] = None
        self.calls: List[str] = []

    def add(self, *items):
        for item in items:
            if isinstance(item, ProductVariant):
                self.variants[item.id] = item
            else:
                self.products[item.id] = item
        return self

    def _check(self, name: str):
        self.calls.append(name)
        if self.fail_with is not None:
            raise self.fail_with

    def get_product_by_id(self, product_id: int) -> Product:
        self._check("get_product_by_id")
        try:
            return self.products[product_id]
        except KeyError:
            raise NotFoundError("Product", product_id)

    def get_product_by_barcode(self, barcode: str) -> Product:
        self._check("get_product_by_barcode")
        for product in self.products.values():
            if product.barcode == barcode:
                return product
        raise NotFoundError("Product", barcode)

    def search_products(self, query: str) -> Optional[Product]:
        self._check("search_products")
        for product in self.products.values():
            if product.is_active and query.lower() in product.name.lower():
                return product
        return None

    def get_variant_by_barcode(self, barcode: str) -> ProductVariant:
        self._check("get_variant_by_barcode")
        for variant in self.variants.values():
            if variant.barcode == barcode:
                return variant
        raise NotFoundError("Product variant", barcode)

    def get_variants_for_product(self, product_id: int) -> List[ProductVariant]:
        self._check("get_variants_for_product")
        return [v for v in self.variants.values() if v.product_id == product_id]


class FakeLoyalty:
    def __init__(self):
        self.customers: Dict[str, Customer] = {}
        self.point_value = 1  # minor units per point
        self.redeemed: List[tuple] = []

    def get_customer_by_phone(self, phone: str) -> Customer:
        try:
            return self.customers[phone]
        except KeyError:
            raise NotFoundError("Customer", phone)

    def redeem_points(self, customer_id: int, points: int) -> int:
        self.redeemed.append((customer_id, points))
        return points * self.point_value


class FakeSales:
    def __init__(self):
        self.sales: List[FinalizedSale] = []
        self.fail_with: Optional[Exception] = None

    def create_sale(self, sale: FinalizedSale) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.sales.append(sale)
        return f"R-{len(self.sales):04d}"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings():
    return TerminalSettings()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def loyalty():
    fake = FakeLoyalty()
    fake.customers["0400111222"] = Customer(id=7, name="Sam Lee", phone_number="0400111222", loyalty_points=500)
    return fake


@pytest.fixture
def sales():
    return FakeSales()


@pytest.fixture
def cart(catalog):
    return CartStore(catalog=catalog)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def parked_store():
    return InMemoryParkedSaleStore()


@pytest.fixture
def parked_manager(parked_store, settings, clock):
    return ParkedSaleManager(parked_store, settings, clock=clock)


@pytest.fixture
def session(catalog, loyalty, sales, parked_store, settings, parked_manager):
    return SaleSession(
        catalog=catalog,
        loyalty=loyalty,
        sales=sales,
        parked_store=parked_store,
        settings=settings,
        parked_manager=parked_manager,
    )
