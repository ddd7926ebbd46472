#!/usr/bin/env python3
"""
Tests for the model-facing tools.

Each tool runs against a real memory-backed session store, a primed menu
and an in-memory order database, exactly as the agent would call it.
"""
import os
import re
import sys
import unittest

sys.path.insert(0, os.path.dirname(__file__))
from fakes import FakeClock, memory_database, menu_products

from pizzeria_bot.agents.tools import ToolExecutor, build_tool_declarations, cart_line_for
from pizzeria_bot.app.session import SessionManager
from pizzeria_bot.data.customer_store import CustomerStore
from pizzeria_bot.data.menu_store import MenuStore
from pizzeria_bot.data.models import Ingredient
from pizzeria_bot.data.order_store import OrderStore
from pizzeria_bot.schemas.session_models import DeliveryQuote, LatLng, PendingAddressChange

PHONE = "51987654321"


class ToolTestCase(unittest.TestCase):
    def setUp(self):
        self.engine, self.factory = memory_database()
        self.sessions = SessionManager(backend="memory", clock=FakeClock())
        self.menu = MenuStore()
        self.menu.prime(menu_products())
        self.orders = OrderStore(self.factory, restaurant_code="sm")
        self.customers = CustomerStore(self.factory)
        self.executor = ToolExecutor(self.sessions, self.menu, self.orders, self.customers)
        self.session = self.sessions.get_session(PHONE)

    def tearDown(self):
        self.engine.dispose()

    def run_tool(self, name, /, **args):
        return self.executor.execute(PHONE, self.session, name, args)

    def ready_for_delivery(self):
        self.session.name = "Juan Pérez"
        self.session.address = self.session.order_address = "Av. Larco 123, Miraflores"
        self.session.delivery = DeliveryQuote(location=LatLng(lat=-12.047, lng=-77.043), distance_km=0.07, cost=3.0)


class TestDeclarations(ToolTestCase):
    def test_enums_follow_live_menu(self):
        tools = {t["name"]: t for t in build_tool_declarations(self.menu.get_menu())}
        self.assertEqual(len(tools), 11)
        add = tools["addToCart"]["parameters"]
        self.assertIn("lasagna_alfredo", add["properties"]["itemId"]["enum"])
        self.assertIn("1.5Lt", add["properties"]["size"]["enum"])
        self.assertEqual(add["required"], ["itemId"])


class TestCartTools(ToolTestCase):
    def test_unknown_tool_and_bad_arguments(self):
        self.assertEqual(self.run_tool("dropTables").status, "error")
        result = self.run_tool("addToCart", itemId="pizza_pepperoni", quantity=0)
        self.assertEqual(result.status, "error")
        self.assertEqual(self.session.cart, [])

    def test_sized_item_without_size_needs_size(self):
        result = self.run_tool("addToCart", itemId="pizza_pepperoni")
        self.assertEqual(result.status, "need_size")
        self.assertEqual(result.response["sizes"], ["Grande", "Familiar"])
        self.assertFalse(result.meta.cart_updated)
        self.assertEqual(self.session.cart, [])

    def test_sized_item_gets_composite_line(self):
        result = self.run_tool("addToCart", itemId="pizza_pepperoni", size="familiar", quantity=2)
        self.assertTrue(result.meta.cart_updated)
        line = self.session.cart[0]
        self.assertEqual(line.product_id, "pizza_pepperoni__Familiar")
        self.assertEqual(line.name, "Pizza Pepperoni (Familiar)")
        self.assertEqual(line.unit_price, 35)
        self.assertEqual(line.quantity, 2)
        self.assertEqual(line.menu_item_id, "pizza_pepperoni")

    def test_single_price_item_needs_no_size(self):
        self.run_tool("addToCart", itemId="lasagna_alfredo")
        self.assertEqual(self.session.cart[0].product_id, "lasagna_alfredo")
        self.assertEqual(self.session.cart[0].unit_price, 21)

    def test_unavailable_size(self):
        result = self.run_tool("addToCart", itemId="drink_inca_kola", size="Familiar")
        self.assertEqual(result.status, "error")
        self.assertEqual(result.response["sizes"], ["500ml", "1.5Lt"])

    def test_remove_by_loose_reference(self):
        self.run_tool("addToCart", itemId="drink_coca_cola", size="500ml")
        self.run_tool("addToCart", itemId="lasagna_alfredo")
        result = self.run_tool("removeFromCart", itemId="coca cola")
        self.assertEqual(result.status, "success")
        self.assertEqual([c.product_id for c in self.session.cart], ["lasagna_alfredo"])

    def test_mixed_pizza_charges_higher_price(self):
        result = self.run_tool("addMixedPizza", flavorA="pepperoni", flavorB="americana", size="Familiar")
        self.assertEqual(result.status, "success")
        line = self.session.cart[0]
        self.assertEqual(line.product_id, "mixed_pizza_pepperoni_pizza_americana_Familiar")
        self.assertEqual(line.unit_price, 35)

    def test_mixed_pizza_rejects_unknown_size(self):
        result = self.run_tool("addMixedPizza", flavorA="pepperoni", flavorB="americana", size="Personal")
        self.assertEqual(result.status, "error")

    def test_display_tools_set_meta(self):
        self.assertTrue(self.run_tool("getMenu").meta.show_menu)
        self.assertTrue(self.run_tool("showCart").meta.show_cart)
        self.assertEqual(self.run_tool("getMenuItems", categoryId="drink").meta.show_category, "drink")

    def test_search_menu(self):
        result = self.run_tool("searchMenu", query="una lasaña alfredo")
        self.assertEqual(result.response["count"], 1)
        self.assertEqual(result.response["results"][0]["id"], "lasagna_alfredo")

    def test_search_by_category_word(self):
        result = self.run_tool("searchMenu", query="refresco")
        ids = {r["id"] for r in result.response["results"]}
        self.assertEqual(ids, {"drink_inca_kola", "drink_coca_cola", "drink_chicha"})

    def test_loose_item_reference_resolves_with_size(self):
        result = self.run_tool("addToCart", itemId="pepperoni familiar")
        self.assertEqual(result.status, "success")
        self.assertEqual(self.session.cart[0].product_id, "pizza_pepperoni__Familiar")
        self.assertEqual(self.session.cart[0].unit_price, 35)

    def test_unknown_item_reference(self):
        self.assertEqual(self.run_tool("addToCart", itemId="sushi").status, "error")

    def test_cart_line_for(self):
        item = self.menu.get_item("drink_chicha")
        self.assertEqual(cart_line_for(item, "1Lt")["product_id"], "drink_chicha")


class TestCheckoutTools(ToolTestCase):
    def test_start_checkout_needs_name_then_address(self):
        self.assertEqual(self.run_tool("startCheckout").status, "need_name")
        self.session.name = "Juan"
        self.assertEqual(self.run_tool("startCheckout").status, "need_address")
        self.ready_for_delivery()
        result = self.run_tool("startCheckout")
        self.assertEqual(result.status, "ready")
        self.assertTrue(result.meta.show_cart)

    def test_delivery_details_with_coordinates_complete_checkout(self):
        self.run_tool("setDeliveryDetails", name="Ana Torres", address="Jr. Lima 456 -12.0470,-77.0430")
        result = self.run_tool("startCheckout")
        self.assertEqual(result.status, "ready")
        self.assertEqual(self.session.final_address, "Jr. Lima 456")
        self.assertIsNone(self.session.pending_address_change)

    def test_confirm_checks_pending_address_first(self):
        self.session.pending_address_change = PendingAddressChange(address_text="Jr. Lima 456", awaiting_choice=True)
        self.assertEqual(self.run_tool("confirmOrder").status, "pending_address")

    def test_confirm_requires_customer_data(self):
        self.run_tool("addToCart", itemId="lasagna_alfredo")
        self.assertEqual(self.run_tool("confirmOrder").status, "pending_data")

    def test_confirm_requires_delivery_quote(self):
        self.run_tool("addToCart", itemId="lasagna_alfredo")
        self.ready_for_delivery()
        self.session.delivery = None
        self.assertEqual(self.run_tool("confirmOrder").status, "pending_delivery")

    def test_confirm_with_empty_cart(self):
        self.ready_for_delivery()
        self.assertEqual(self.run_tool("confirmOrder").status, "empty_cart")

    def test_confirm_creates_order_and_resets_session(self):
        self.run_tool("addToCart", itemId="pizza_pepperoni", size="Familiar")
        self.ready_for_delivery()
        result = self.run_tool("confirmOrder")

        self.assertEqual(result.status, "confirmed")
        self.assertRegex(result.response["orderCode"], r"^\d{6}sm01$")
        self.assertEqual(result.response["total"], 38.0)
        self.assertTrue(result.meta.session_reset)
        self.assertTrue(result.meta.stop_conversation)
        self.assertIn("Pedido confirmado", result.meta.confirmation_message)

        fresh = self.sessions.get_session(PHONE)
        self.assertEqual(fresh.cart, [])
        self.assertIsNone(fresh.name)

        db = self.factory()
        try:
            masa = db.query(Ingredient).filter(Ingredient.name == "masa").one()
            self.assertEqual(masa.stock, 199)
        finally:
            db.close()
        profile = self.customers.get_customer(PHONE)
        self.assertEqual(profile.address_text, "Av. Larco 123, Miraflores")

    def test_check_order_status(self):
        self.assertEqual(self.run_tool("checkOrderStatus").status, "error")
        self.run_tool("addToCart", itemId="lasagna_alfredo")
        self.ready_for_delivery()
        code = self.run_tool("confirmOrder").response["orderCode"]
        result = self.run_tool("checkOrderStatus")
        self.assertEqual(result.response["orderStatus"], "confirmed")
        self.assertTrue(re.search(re.escape(code), result.response["message"]))
        self.assertIn("Confirmado", result.response["message"])


if __name__ == "__main__":
    unittest.main()
