#!/usr/bin/env python3
"""
Tests for order persistence and inventory bookkeeping.

Runs against a private in-memory SQLite database seeded from menu.json.
"""
import os
import sys
import unittest
from datetime import datetime, timedelta
from unittest import mock

sys.path.insert(0, os.path.dirname(__file__))
from fakes import memory_database

from pizzeria_bot.data.customer_store import CustomerStore
from pizzeria_bot.data.models import Ingredient, InventoryMovement, Order
from pizzeria_bot.data.order_store import OrderStore, format_order_code, week_start
from pizzeria_bot.schemas.order_models import OrderInput, OrderItemInput, OrderStatus
from pizzeria_bot.utils.address import parse_address, stringify_address

PHONE = "51987654321"
WEDNESDAY = datetime(2025, 3, 12, 13, 30)


def pepperoni_order(quantity=2):
    return OrderInput(
        phone_number=PHONE,
        items=[OrderItemInput(product_id="pizza_pepperoni", product_name="Pizza Pepperoni (Familiar)",
                              quantity=quantity, unit_price=35)],
        total=35 * quantity + 3,
    )


class TestOrderCode(unittest.TestCase):
    def test_format(self):
        self.assertEqual(format_order_code(WEDNESDAY, 7, "sm"), "120325sm07")

    def test_week_starts_monday_midnight(self):
        self.assertEqual(week_start(WEDNESDAY), datetime(2025, 3, 10, 0, 0))


class TestOrderStore(unittest.TestCase):
    def setUp(self):
        self.engine, self.factory = memory_database()
        self.now = WEDNESDAY
        self.store = OrderStore(self.factory, restaurant_code="sm", clock=lambda: self.now)

    def tearDown(self):
        self.engine.dispose()

    def stock(self, name):
        db = self.factory()
        try:
            return db.query(Ingredient).filter(Ingredient.name == name).one().stock
        finally:
            db.close()

    def test_create_order_code_and_stock(self):
        receipt = self.store.create_order(pepperoni_order(2))
        self.assertEqual(receipt.order_code, "120325sm01")
        self.assertEqual(self.stock("masa"), 198)
        self.assertEqual(self.stock("mozzarella"), 40000 - 500)
        self.assertEqual(self.stock("pepperoni"), 10000 - 240)

        db = self.factory()
        try:
            movements = db.query(InventoryMovement).filter(InventoryMovement.order_id == receipt.order_id).all()
            self.assertEqual(len(movements), 3)
            self.assertTrue(all(m.type.value == "sale" and m.quantity < 0 for m in movements))
        finally:
            db.close()

    def test_weekly_numbering(self):
        self.store.create_order(pepperoni_order(1))
        self.now = WEDNESDAY + timedelta(hours=2)
        second = self.store.create_order(pepperoni_order(1))
        self.assertEqual(second.order_code, "120325sm02")

        # next Monday starts again at 01
        self.now = datetime(2025, 3, 17, 9, 0)
        third = self.store.create_order(pepperoni_order(1))
        self.assertEqual(third.order_code, "170325sm01")

    def test_products_without_recipe_leave_stock_alone(self):
        order = OrderInput(
            phone_number=PHONE,
            items=[OrderItemInput(product_id="drink_inca_kola", product_name="Inca Kola (500ml)",
                                  quantity=1, unit_price=4)],
            total=7,
        )
        self.store.create_order(order)
        self.assertEqual(self.stock("masa"), 200)

    def test_failure_rolls_back_everything(self):
        with mock.patch.object(OrderStore, "_apply_recipe_stock", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                self.store.create_order(pepperoni_order(1))
        db = self.factory()
        try:
            self.assertEqual(db.query(Order).count(), 0)
        finally:
            db.close()
        self.assertEqual(self.stock("masa"), 200)

    def test_cancel_restores_stock(self):
        receipt = self.store.create_order(pepperoni_order(2))
        self.assertTrue(self.store.update_order_status(receipt.order_id, OrderStatus.cancelled))
        self.assertEqual(self.stock("masa"), 200)
        self.assertEqual(self.stock("pepperoni"), 10000)
        # cancelling twice does not restore twice
        self.store.update_order_status(receipt.order_id, OrderStatus.cancelled)
        self.assertEqual(self.stock("masa"), 200)

    def test_update_unknown_order(self):
        self.assertFalse(self.store.update_order_status("missing", OrderStatus.ready))

    def test_last_order_status(self):
        self.assertIsNone(self.store.get_last_order_status(PHONE))
        self.store.create_order(pepperoni_order(1))
        self.now = WEDNESDAY + timedelta(minutes=5)
        receipt = self.store.create_order(pepperoni_order(1))
        self.store.update_order_status(receipt.order_id, OrderStatus.preparing)
        last = self.store.get_last_order_status(PHONE)
        self.assertEqual(last.order_code, "120325sm02")
        self.assertEqual(last.status, "preparing")

    def test_expire_stale_orders(self):
        self.store.create_order(pepperoni_order(1))
        self.now = WEDNESDAY + timedelta(hours=13)
        self.assertEqual(self.store.expire_stale_orders(), 1)
        self.assertEqual(self.store.get_last_order_status(PHONE).status, "expired")


class TestCustomerStore(unittest.TestCase):
    def setUp(self):
        self.engine, self.factory = memory_database(seed=False)
        self.store = CustomerStore(self.factory)

    def tearDown(self):
        self.engine.dispose()

    def test_upsert_and_read_back(self):
        self.assertIsNone(self.store.get_customer(PHONE))
        first = self.store.upsert_customer(PHONE, name="Juan Pérez",
                                           address=stringify_address("Av. Larco 123", {"lat": -12.1, "lng": -77.0}))
        self.assertTrue(first["created"])
        second = self.store.upsert_customer(PHONE, email="juan@example.com")
        self.assertFalse(second["created"])

        profile = self.store.get_customer(PHONE)
        self.assertEqual(profile.name, "Juan Pérez")
        self.assertEqual(profile.email, "juan@example.com")
        self.assertEqual(profile.address_text, "Av. Larco 123")
        self.assertEqual(profile.address_location, {"lat": -12.1, "lng": -77.0})

    def test_legacy_plain_address(self):
        self.assertEqual(parse_address("Jr. Lima 456"), {"text": "Jr. Lima 456", "location": None})
        self.assertEqual(parse_address(None), {"text": None, "location": None})


if __name__ == "__main__":
    unittest.main()
