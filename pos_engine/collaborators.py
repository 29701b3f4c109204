"""
Contracts for the services the sale engine consumes.

Implementations raise NotFoundError for a missing record and
InfrastructureError for anything else that went wrong.
"""
from typing import List, Optional, Protocol

from pos_engine.models import (
    Customer,
    FinalizedSale,
    ParkedSale,
    Product,
    ProductVariant,
)


class CatalogGateway(Protocol):
    def get_product_by_id(self, product_id: int) -> Product: ...

    def get_product_by_barcode(self, barcode: str) -> Product: ...

    def search_products(self, query: str) -> Optional[Product]:
        """Return the first active product matching ``query``, or None"""
        ...

    def get_variant_by_barcode(self, barcode: str) -> ProductVariant: ...

    def get_variants_for_product(self, product_id: int) -> List[ProductVariant]: ...


class LoyaltyGateway(Protocol):
    def get_customer_by_phone(self, phone: str) -> Customer: ...

    def redeem_points(self, customer_id: int, points: int) -> int:
        """Redeem points and return the discount amount in minor units"""
        ...


class SalesGateway(Protocol):
    def create_sale(self, sale: FinalizedSale) -> str:
        """Persist a sale and return its receipt id"""
        ...


class ParkedSaleStore(Protocol):
    def create_parked_sale(self, parked: ParkedSale) -> ParkedSale: ...

    def get_parked_sale(self, parked_id: str) -> ParkedSale: ...

    def list_parked_sales(self) -> List[ParkedSale]: ...

    def delete_parked_sale(self, parked_id: str) -> None: ...
