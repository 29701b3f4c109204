"""
Resolves scanned codes and typed queries to a variant, a product, or nothing.
"""
import logging
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict

from pos_engine.collaborators import CatalogGateway
from pos_engine.exceptions import InfrastructureError, NotFoundError
from pos_engine.models import Product, ProductVariant

logger = logging.getLogger(__name__)


class LookupStatus(str, Enum):
    FOUND = "FOUND"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"


class ResolutionKind(str, Enum):
    VARIANT = "VARIANT"
    PRODUCT = "PRODUCT"
    NOT_FOUND = "NOT_FOUND"


class Resolution(BaseModel):
    kind: ResolutionKind
    product: Optional[Product] = None
    variant: Optional[ProductVariant] = None
    message: Optional[str] = None


class LookupResult(BaseModel):
    """Outcome of one step of the fallback chain"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: LookupStatus
    resolution: Optional[Resolution] = None
    error: Optional[InfrastructureError] = None

    @classmethod
    def found(cls, resolution: Resolution) -> "LookupResult":
        return cls(status=LookupStatus.FOUND, resolution=resolution)

    @classmethod
    def not_found(cls) -> "LookupResult":
        return cls(status=LookupStatus.NOT_FOUND)

    @classmethod
    def failed(cls, error: InfrastructureError) -> "LookupResult":
        return cls(status=LookupStatus.ERROR, error=error)


Strategy = Callable[[str], LookupResult]


def _is_numeric(query: str) -> bool:
    return query.isascii() and query.isdigit()


class VariantResolver:
    """
    Runs an ordered list of lookup strategies and stops at the first one that
    finds something or fails. Strategies that find nothing hand over to the
    next one without reporting anything.
    """

    def __init__(self, catalog: CatalogGateway):
        self.catalog = catalog
        self.strategies: List[Strategy] = [
            self.lookup_variant_by_code,
            self.lookup_product_by_barcode,
            self.search_by_name,
        ]

    def _guarded(self, lookup: Callable[[], Resolution]) -> LookupResult:
        try:
            return LookupResult.found(lookup())
        except NotFoundError:
            return LookupResult.not_found()
        except InfrastructureError as e:
            return LookupResult.failed(e)

    def lookup_variant_by_code(self, query: str) -> LookupResult:
        if not _is_numeric(query):
            return LookupResult.not_found()

        def _lookup() -> Resolution:
            variant = self.catalog.get_variant_by_barcode(query)
            product = self.catalog.get_product_by_id(variant.product_id)
            return Resolution(kind=ResolutionKind.VARIANT, product=product, variant=variant)

        return self._guarded(_lookup)

    def lookup_product_by_barcode(self, query: str) -> LookupResult:
        if not _is_numeric(query):
            return LookupResult.not_found()

        def _lookup() -> Resolution:
            product = self.catalog.get_product_by_barcode(query)
            return Resolution(kind=ResolutionKind.PRODUCT, product=product)

        return self._guarded(_lookup)

    def search_by_name(self, query: str) -> LookupResult:
        def _lookup() -> Resolution:
            product = self.catalog.search_products(query)
            if product is None or not product.is_active:
                raise NotFoundError("Product", query)
            return Resolution(kind=ResolutionKind.PRODUCT, product=product)

        return self._guarded(_lookup)

    def resolve(self, raw: str) -> Resolution:
        """
        Resolve a scanned code or free-text query.

        Raises:
            InfrastructureError: a lookup failed for a reason other than not-found
        """
        query = (raw or "").strip()
        if not query:
            return Resolution(kind=ResolutionKind.NOT_FOUND, message="Nothing to look up")

        for strategy in self.strategies:
            result = strategy(query)
            if result.status == LookupStatus.FOUND:
                return result.resolution
            if result.status == LookupStatus.ERROR:
                logger.error(f"Lookup failed in {strategy.__name__}: {result.error}")
                raise result.error

        logger.info("No product matched scanned input")
        return Resolution(kind=ResolutionKind.NOT_FOUND, message="Product not found")

    def variants_for_selection(self, product: Product) -> List[ProductVariant]:
        """Active variants with stock, offered when a product needs a variant chosen"""
        variants = self.catalog.get_variants_for_product(product.id)
        return [v for v in variants if v.is_active and (v.stock_quantity or 0) > 0]
