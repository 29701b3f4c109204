"""
Tests for the live cart store.
"""
import pytest
from pydantic import ValidationError as PydanticValidationError

from pos_engine.cart_service import CartStore
from pos_engine.exceptions import InfrastructureError, NotFoundError, StockError, ValidationError
from pos_engine.models import Customer

from conftest import make_product, make_variant


class TestAddItem:
    def test_new_line_uses_selling_price_and_tax(self, cart):
        product = make_product(1, price="4.99", tax="8")
        line = cart.add_item(product)
        assert line.quantity == 1
        assert line.unit_price == 499
        assert line.tax_rate == 8
        assert line.subtotal == 499
        assert cart.lines == [line]

    def test_adding_same_product_increments(self, cart):
        product = make_product(1, stock=5)
        cart.add_item(product)
        line = cart.add_item(product)
        assert len(cart) == 1
        assert line.quantity == 2
        assert line.subtotal == 2000

    def test_variant_is_a_separate_line(self, cart):
        product = make_product(1, has_variants=True)
        variant = make_variant(11, 1, price="12.50")
        cart.add_item(product)
        line = cart.add_item(product, variant)
        assert len(cart) == 2
        assert line.key == (1, 11)
        assert line.unit_price == 1250
        assert line.tax_rate == product.tax_rate

    def test_out_of_stock_is_rejected(self, cart):
        with pytest.raises(StockError) as exc:
            cart.add_item(make_product(1, stock=0))
        assert "out of stock" in str(exc.value)
        assert cart.is_empty

    def test_out_of_stock_variant_is_rejected(self, cart):
        product = make_product(1, stock=50)
        with pytest.raises(StockError):
            cart.add_item(product, make_variant(11, 1, stock=0))

    def test_second_add_beyond_stock_is_rejected(self, cart):
        product = make_product(1, stock=1)
        cart.add_item(product)
        with pytest.raises(StockError) as exc:
            cart.add_item(product)
        assert exc.value.available == 1
        assert cart.get_line((1, None)).quantity == 1

    def test_variant_from_another_product_is_rejected(self, cart):
        with pytest.raises(ValidationError):
            cart.add_item(make_product(1), make_variant(11, 2))

    def test_insertion_order_is_kept(self, cart):
        for product_id in (3, 1, 2):
            cart.add_item(make_product(product_id))
        cart.add_item(make_product(1))
        assert [line.product.id for line in cart.lines] == [3, 1, 2]


class TestUpdateQuantity:
    def test_overwrites_quantity(self, cart, catalog):
        product = make_product(1, stock=10)
        catalog.add(product)
        cart.add_item(product)
        line = cart.update_quantity((1, None), 4)
        assert line.quantity == 4
        assert line.subtotal == 4000

    def test_rejects_above_stock(self, cart, catalog):
        product = make_product(1, stock=3)
        catalog.add(product)
        cart.add_item(product)
        with pytest.raises(StockError):
            cart.update_quantity((1, None), 4)
        assert cart.get_line((1, None)).quantity == 1

    def test_stock_is_rechecked_against_catalog(self, cart, catalog):
        cart.add_item(make_product(1, stock=10))
        catalog.add(make_product(1, stock=2))
        with pytest.raises(StockError):
            cart.update_quantity((1, None), 3)
        line = cart.update_quantity((1, None), 2)
        assert line.available_stock == 2

    def test_variant_stock_is_rechecked(self, cart, catalog):
        product = make_product(1)
        cart.add_item(product, make_variant(11, 1, stock=10))
        catalog.add(product, make_variant(11, 1, stock=1))
        with pytest.raises(StockError):
            cart.update_quantity((1, 11), 2)

    def test_without_catalog_uses_last_known_stock(self):
        cart = CartStore()
        cart.add_item(make_product(1, stock=2))
        cart.update_quantity((1, None), 2)
        with pytest.raises(StockError):
            cart.update_quantity((1, None), 3)

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_removes_line(self, cart, quantity):
        cart.add_item(make_product(1))
        assert cart.update_quantity((1, None), quantity) is None
        assert cart.is_empty

    def test_unknown_line(self, cart):
        with pytest.raises(NotFoundError):
            cart.update_quantity((99, None), 1)

    def test_catalog_failure_leaves_line_alone(self, cart, catalog):
        cart.add_item(make_product(1))
        catalog.fail_with = InfrastructureError("backend down")
        with pytest.raises(InfrastructureError):
            cart.update_quantity((1, None), 2)
        assert cart.get_line((1, None)).quantity == 1


class TestRemoveAndClear:
    def test_remove(self, cart):
        cart.add_item(make_product(1))
        assert cart.remove_item((1, None)) is True
        assert cart.is_empty

    def test_remove_missing_is_noop(self, cart):
        cart.add_item(make_product(1))
        assert cart.remove_item((2, None)) is False
        assert len(cart) == 1

    def test_clear_detaches_customer(self, cart):
        cart.add_item(make_product(1))
        cart.attach_customer(Customer(id=1, name="Ana"))
        cart.clear()
        assert cart.is_empty
        assert cart.customer is None


def test_unit_price_cannot_be_changed(cart):
    line = cart.add_item(make_product(1))
    with pytest.raises(PydanticValidationError):
        line.unit_price = 1


def test_load_rejects_duplicate_keys(cart):
    first = cart.add_item(make_product(1))
    with pytest.raises(ValidationError):
        cart.load([first, first])
