"""
REST client for the POS backend: catalog lookups, customer loyalty and sale creation.
"""
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from pos_engine.config import Config
from pos_engine.exceptions import InfrastructureError, NotFoundError
from pos_engine.models import Customer, FinalizedSale, Product, ProductVariant
from pos_engine.money import to_decimal, to_minor

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class BackendClient:
    """
    Implements the catalog, loyalty and sales gateways over HTTP.

    A 404 means the record does not exist and is raised as NotFoundError.
    Transport failures and any other error status become InfrastructureError.
    No retries are made here.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        currency_exponent: int = 2,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        token = api_token if api_token is not None else Config.BACKEND_API_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.currency_exponent = currency_exponent
        self.client = httpx.Client(
            base_url=base_url or Config.BACKEND_URL,
            headers=headers,
            timeout=timeout or Config.BACKEND_TIMEOUT_SECONDS,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, what: str, key: Any = None, **kwargs) -> Any:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Backend request failed: {method} {path}: {e}")
            raise InfrastructureError(f"Backend unavailable: {e}")

        if response.status_code == 404:
            raise NotFoundError(what, key)
        if response.is_error:
            logger.error(
                f"Backend error: {method} {path} {response.status_code}",
                extra={"status_code": response.status_code},
            )
            raise InfrastructureError(
                f"Backend returned {response.status_code} for {what.lower()}: {self._error_message(response)}"
            )

        try:
            return response.json()
        except ValueError:
            raise InfrastructureError(f"Backend returned invalid JSON for {what.lower()}")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            errors = body.get("errors")
            if errors:
                return errors[0].get("msg", str(errors[0]))
            return body.get("error") or body.get("message") or str(body)
        return str(body)

    @staticmethod
    def _parse(model: Type[ModelT], body: Any, what: str) -> ModelT:
        try:
            return model.model_validate(body)
        except PydanticValidationError as e:
            logger.error(f"Backend returned an invalid {what.lower()}: {e}")
            raise InfrastructureError(f"Backend returned an invalid {what.lower()}")

    @staticmethod
    def _unwrap_list(body: Any) -> List[Dict[str, Any]]:
        if isinstance(body, list):
            return body
        return body.get("data") or []

    # Catalog

    def get_product_by_id(self, product_id: int) -> Product:
        return self._parse(Product, self._request("GET", f"/products/{product_id}", "Product", product_id), "Product")

    def get_product_by_barcode(self, barcode: str) -> Product:
        return self._parse(Product, self._request("GET", f"/products/barcode/{barcode}", "Product", barcode), "Product")

    def search_products(self, query: str) -> Optional[Product]:
        body = self._request(
            "GET",
            "/products",
            "Product",
            query,
            params={"search": query, "isActive": "true", "limit": 1},
        )
        results = self._unwrap_list(body)
        if not results:
            return None
        return self._parse(Product, results[0], "Product")

    def get_variant_by_barcode(self, barcode: str) -> ProductVariant:
        body = self._request("GET", f"/product-variants/lookup/{barcode}", "Product variant", barcode)
        return self._parse(ProductVariant, body, "Product variant")

    def get_variants_for_product(self, product_id: int) -> List[ProductVariant]:
        body = self._request(
            "GET",
            "/product-variants",
            "Product variants",
            product_id,
            params={"productId": product_id},
        )
        return [self._parse(ProductVariant, v, "Product variant") for v in self._unwrap_list(body)]

    # Loyalty

    def get_customer_by_phone(self, phone: str) -> Customer:
        return self._parse(Customer, self._request("GET", f"/customers/phone/{phone}", "Customer", phone), "Customer")

    def redeem_points(self, customer_id: int, points: int) -> int:
        body = self._request(
            "POST",
            "/loyalty/redeem",
            "Customer",
            customer_id,
            json={"customerId": customer_id, "points": points},
        )
        if not isinstance(body, dict):
            raise InfrastructureError("Backend returned an invalid redemption")
        try:
            return to_minor(str(body.get("discountAmount", 0)), self.currency_exponent)
        except ValueError:
            raise InfrastructureError("Backend returned an invalid redemption")

    # Sales

    def _money(self, minor: int) -> float:
        return float(to_decimal(minor, self.currency_exponent))

    def sale_payload(self, sale: FinalizedSale) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "customerId": sale.customer_id,
            "items": [
                {
                    "productId": line.product_id,
                    "productVariantId": line.variant_id,
                    "quantity": line.quantity,
                    "price": self._money(line.unit_price),
                    "discount": self._money(line.discount),
                }
                for line in sale.lines
            ],
            "paymentMethod": sale.payment_method.value,
            "loyaltyDiscount": self._money(sale.discount),
        }
        if sale.payment_splits:
            payload["paymentSplits"] = [
                {"paymentMethod": split.method.value, "amount": self._money(split.amount)}
                for split in sale.payment_splits
            ]
        if sale.cash_received is not None:
            payload["cashReceived"] = self._money(sale.cash_received)
        return payload

    def create_sale(self, sale: FinalizedSale) -> str:
        body = self._request("POST", "/sales", "Sale", json=self.sale_payload(sale))
        receipt_id = (body.get("receiptId") or body.get("id")) if isinstance(body, dict) else None
        if receipt_id is None:
            raise InfrastructureError("Backend did not return a receipt id")
        return str(receipt_id)
