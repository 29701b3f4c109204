"""
Tests for parking, listing, resuming and deleting parked sales.
"""
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from pos_engine.atomic_scripts import CREATE_PARKED_SALE_SCRIPT, DELETE_PARKED_SALE_SCRIPT
from pos_engine.exceptions import CartEmptyError, InfrastructureError, NotFoundError
from pos_engine.models import Customer, ParkedSale
from pos_engine.parked_sale_store import InMemoryParkedSaleStore, RedisParkedSaleStore
from pos_engine.parked_sales import ParkedSaleManager

from conftest import make_product, make_variant


@pytest.fixture
def filled_cart(cart):
    cart.add_item(make_product(1, price="3.50", tax="10"))
    cart.add_item(make_product(1, price="3.50", tax="10"))
    cart.add_item(make_product(2, has_variants=True), make_variant(21, 2, price="8.00", name="Large"))
    cart.attach_customer(Customer(id=7, name="Sam Lee", loyalty_points=120))
    return cart


class TestPark:
    def test_empty_cart_cannot_be_parked(self, parked_manager, cart):
        with pytest.raises(CartEmptyError):
            parked_manager.park(cart)

    def test_park_snapshots_and_clears(self, parked_manager, filled_cart, clock):
        parked = parked_manager.park(filled_cart, notes="  back in 5  ", discount=50)

        assert filled_cart.is_empty
        assert filled_cart.customer is None
        assert parked.id == "1"
        assert parked.notes == "back in 5"
        assert parked.customer_id == 7
        assert parked.subtotal == 700 + 800
        assert parked.tax_amount == 70
        assert parked.discount_amount == 50
        assert parked.parked_at == clock.now
        assert parked.expires_at == clock.now + timedelta(days=7)

    def test_items_are_denormalized(self, parked_manager, filled_cart):
        parked = parked_manager.park(filled_cart)

        first, second = parked.items
        assert (first.product_id, first.product_name, first.product_sku) == (1, "Product 1", "SKU-1")
        assert (first.quantity, first.price, first.tax_rate) == (2, 350, Decimal("10"))
        assert first.variant_id is None
        assert (second.variant_id, second.variant_name, second.variant_sku) == (21, "Large", "VSKU-21")
        assert second.price == 800

    def test_store_failure_keeps_cart(self, settings, clock, filled_cart):
        store = MagicMock()
        store.create_parked_sale.side_effect = RuntimeError("disk full")
        manager = ParkedSaleManager(store, settings, clock=clock)

        with pytest.raises(InfrastructureError):
            manager.park(filled_cart)
        assert len(filled_cart) == 2
        assert filled_cart.customer.id == 7

    def test_store_infrastructure_error_passes_through(self, settings, clock, filled_cart):
        store = MagicMock()
        store.create_parked_sale.side_effect = InfrastructureError("redis down")
        manager = ParkedSaleManager(store, settings, clock=clock)

        with pytest.raises(InfrastructureError, match="redis down"):
            manager.park(filled_cart)
        assert not filled_cart.is_empty


class TestResume:
    def _snapshot(self, cart):
        return [(line.key, line.quantity, line.unit_price, line.tax_rate) for line in cart.lines]

    def test_resume_restores_lines_and_customer(self, parked_manager, filled_cart):
        before = self._snapshot(filled_cart)
        parked = parked_manager.park(filled_cart)

        parked_manager.resume(parked, filled_cart)

        assert self._snapshot(filled_cart) == before
        assert filled_cart.customer.id == 7
        assert filled_cart.lines[1].display_name == "Product 2 - Large"

    def test_expired_sale_resumes_identically(self, parked_manager, filled_cart, clock):
        before = self._snapshot(filled_cart)
        parked = parked_manager.park(filled_cart)

        clock.now = clock.now + timedelta(days=30)
        assert parked.is_expired(clock.now)
        parked_manager.resume(parked, filled_cart)

        assert self._snapshot(filled_cart) == before

    def test_resumed_lines_use_stock_placeholder(self, parked_manager, filled_cart):
        parked = parked_manager.park(filled_cart)

        parked_manager.resume(parked, filled_cart)

        assert all(line.available_stock == 999 for line in filled_cart.lines)

    def test_resume_replaces_current_cart(self, parked_manager, filled_cart):
        parked = parked_manager.park(filled_cart)
        filled_cart.add_item(make_product(5))

        parked_manager.resume(parked, filled_cart)

        assert [line.product.id for line in filled_cart.lines] == [1, 2]

    def test_resume_by_id(self, parked_manager, filled_cart):
        parked = parked_manager.park(filled_cart)

        resumed = parked_manager.resume_by_id(parked.id, filled_cart)

        assert resumed.id == parked.id
        assert len(filled_cart) == 2

    def test_resume_does_not_delete(self, parked_manager, filled_cart):
        parked = parked_manager.park(filled_cart)
        parked_manager.resume_by_id(parked.id, filled_cart)

        assert [p.id for p in parked_manager.list()] == [parked.id]

    def test_resume_unknown_id(self, parked_manager, cart):
        with pytest.raises(NotFoundError):
            parked_manager.resume_by_id("404", cart)


class TestListAndDelete:
    def test_most_recent_first(self, parked_manager, cart, clock):
        cart.add_item(make_product(1))
        older = parked_manager.park(cart)
        clock.now = clock.now + timedelta(minutes=5)
        cart.add_item(make_product(2))
        newer = parked_manager.park(cart)

        assert [p.id for p in parked_manager.list()] == [newer.id, older.id]

    def test_delete(self, parked_manager, filled_cart):
        parked = parked_manager.park(filled_cart)

        parked_manager.delete(parked.id)

        assert parked_manager.list() == []
        with pytest.raises(NotFoundError):
            parked_manager.delete(parked.id)


class TestExpiryLabels:
    @pytest.fixture
    def parked(self, parked_manager, cart):
        cart.add_item(make_product(1))
        return parked_manager.park(cart)

    def test_active(self, parked, clock):
        assert parked.status_label(clock.now) == "Active"
        assert parked.time_remaining(clock.now) == "7d 0h"

    @pytest.mark.parametrize(
        "elapsed,expected",
        [
            (timedelta(days=5, hours=3), "1d 21h"),
            (timedelta(days=6, hours=20), "4h"),
            (timedelta(days=6, hours=23, minutes=30), "< 1h"),
        ],
    )
    def test_time_remaining(self, parked, clock, elapsed, expected):
        assert parked.time_remaining(clock.now + elapsed) == expected

    def test_expired_is_still_resumable(self, parked, clock):
        later = clock.now + timedelta(days=8)
        assert parked.status_label(later) == "Expired (Still Resumable)"
        assert parked.time_remaining(later) == "Expired"


def test_parked_sale_needs_items(clock):
    with pytest.raises(ValueError):
        ParkedSale(items=[], subtotal=0, tax_amount=0, parked_at=clock.now, expires_at=clock.now)


class TestInMemoryStore:
    def test_ids_are_sequential_strings(self, parked_manager, cart):
        ids = []
        for product_id in (1, 2, 3):
            cart.add_item(make_product(product_id))
            ids.append(parked_manager.park(cart).id)
        assert ids == ["1", "2", "3"]

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            InMemoryParkedSaleStore().get_parked_sale("1")


class TestRedisStore:
    @pytest.fixture
    def redis_wrapper(self):
        return MagicMock()

    @pytest.fixture
    def store(self, redis_wrapper):
        return RedisParkedSaleStore(namespace="terminal-1", redis_client=redis_wrapper)

    @pytest.fixture
    def parked(self, parked_manager, cart):
        cart.add_item(make_product(1, price="2.25"))
        return parked_manager.park(cart, notes="table 4")

    def test_keys_are_namespaced(self, store):
        assert store.records_key == "parked:terminal-1:records"
        assert store.index_key == "parked:terminal-1:index"
        assert store.seq_key == "parked:terminal-1:seq"

    def test_create_runs_script(self, store, redis_wrapper, parked):
        redis_wrapper.eval.return_value = "12"

        stored = store.create_parked_sale(parked.model_copy(update={"id": None}))

        assert stored.id == "12"
        args = redis_wrapper.eval.call_args.args
        assert args[0] == CREATE_PARKED_SALE_SCRIPT
        assert args[1:5] == (3, store.records_key, store.index_key, store.seq_key)
        record = json.loads(args[5])
        assert "id" not in record
        assert record["notes"] == "table 4"
        assert float(args[6]) == parked.parked_at.timestamp()

    def test_get_decodes_record(self, store, redis_wrapper, parked):
        redis_wrapper.hget.return_value = parked.model_dump_json()

        loaded = store.get_parked_sale(parked.id)

        assert loaded == parked
        redis_wrapper.hget.assert_called_once_with(store.records_key, parked.id)

    def test_get_missing(self, store, redis_wrapper):
        redis_wrapper.hget.return_value = None

        with pytest.raises(NotFoundError):
            store.get_parked_sale("9")

    def test_corrupt_record(self, store, redis_wrapper):
        redis_wrapper.hget.return_value = "{not json"

        with pytest.raises(InfrastructureError):
            store.get_parked_sale("9")

    def test_list_skips_dangling_index_entries(self, store, redis_wrapper, parked):
        redis_wrapper.zrevrange.return_value = ["2", "1"]
        redis_wrapper.hmget.return_value = [None, parked.model_dump_json()]

        listed = store.list_parked_sales()

        assert [p.id for p in listed] == [parked.id]
        redis_wrapper.zrevrange.assert_called_once_with(store.index_key, 0, -1)

    def test_list_empty(self, store, redis_wrapper):
        redis_wrapper.zrevrange.return_value = []

        assert store.list_parked_sales() == []
        redis_wrapper.hmget.assert_not_called()

    def test_delete(self, store, redis_wrapper):
        redis_wrapper.eval.return_value = 1

        store.delete_parked_sale("3")

        args = redis_wrapper.eval.call_args.args
        assert args == (DELETE_PARKED_SALE_SCRIPT, 2, store.records_key, store.index_key, "3")

    def test_delete_missing(self, store, redis_wrapper):
        redis_wrapper.eval.return_value = 0

        with pytest.raises(NotFoundError):
            store.delete_parked_sale("3")
