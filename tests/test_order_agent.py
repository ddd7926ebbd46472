#!/usr/bin/env python3
"""
Tests for the ordering agent's tool loop.

The chat model is replaced by a scripted provider so every turn is
deterministic; tools run for real against memory-backed stores.
"""
import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(__file__))
from fakes import FakeClock, ScriptedProvider, memory_database, menu_products

from pizzeria_bot.agents.order_agent import OrderAgent
from pizzeria_bot.app.generate import LLMError, ModelTurn, RateLimitError, ToolCall
from pizzeria_bot.app.session import SessionManager
from pizzeria_bot.data.customer_store import CustomerStore
from pizzeria_bot.data.menu_store import MenuStore
from pizzeria_bot.data.order_store import OrderStore
from pizzeria_bot.schemas.session_models import DeliveryQuote, LatLng

PHONE = "51987654321"


def call(name, **arguments):
    return ModelTurn(tool_calls=[ToolCall(id=f"call_{name}", name=name, arguments=arguments)])


class AgentTestCase(unittest.TestCase):
    def setUp(self):
        self.engine, self.factory = memory_database()
        self.sessions = SessionManager(backend="memory", clock=FakeClock())
        self.menu = MenuStore()
        self.menu.prime(menu_products())
        self.provider = ScriptedProvider()
        self.sleeps = []
        self.agent = OrderAgent(
            self.sessions, self.menu, OrderStore(self.factory), CustomerStore(self.factory),
            provider=self.provider, max_tool_rounds=3, sleep=self.sleeps.append,
        )

    def tearDown(self):
        self.engine.dispose()


class TestTextTurns(AgentTestCase):
    def test_plain_answer_is_recorded_in_history(self):
        self.provider.turns = [ModelTurn(text="¡Claro! ¿Qué pizza deseas?")]
        result = self.agent.process_natural_message(PHONE, "quiero pedir")
        self.assertEqual(result.replies, ["¡Claro! ¿Qué pizza deseas?"])
        self.assertTrue(result.handled)
        history = self.sessions.get_session(PHONE).history
        self.assertEqual([(h.role, h.content) for h in history],
                         [("user", "quiero pedir"), ("assistant", "¡Claro! ¿Qué pizza deseas?")])

    def test_turn_is_framed_with_state(self):
        self.provider.turns = [ModelTurn(text="ok")]
        self.agent.process_natural_message(PHONE, "hola")
        messages = self.provider.calls[0]["messages"]
        self.assertEqual(messages[0]["role"], "system")
        self.assertIn("Usuario dice: hola", messages[-1]["content"])
        self.assertEqual(self.provider.calls[0]["temperature"], 0.5)

    def test_dev_mode_uses_zero_temperature(self):
        session = self.sessions.get_session(PHONE)
        session.is_dev_mode = True
        self.provider.turns = [ModelTurn(text="analysis")]
        self.agent.process_natural_message(PHONE, "hola", session=session)
        self.assertEqual(self.provider.calls[0]["temperature"], 0)
        self.assertIn("MODO DEBUG", self.provider.calls[0]["messages"][-1]["content"])

    def test_empty_answer_needs_fallback(self):
        self.provider.turns = [ModelTurn(text="")]
        result = self.agent.process_natural_message(PHONE, "???")
        self.assertTrue(result.needs_fallback)
        self.assertFalse(result.handled)


class TestRetries(AgentTestCase):
    def test_rate_limit_is_retried_with_backoff(self):
        self.provider.turns = [RateLimitError("429"), RateLimitError("429"), ModelTurn(text="listo")]
        result = self.agent.process_natural_message(PHONE, "hola")
        self.assertEqual(result.replies, ["listo"])
        self.assertEqual(self.sleeps, [2, 4])

    def test_rate_limit_gives_up_after_three_attempts(self):
        self.provider.turns = [RateLimitError("429")] * 3
        with self.assertRaises(RateLimitError):
            self.agent.process_natural_message(PHONE, "hola")

    def test_other_errors_are_not_retried(self):
        self.provider.turns = [LLMError("500"), ModelTurn(text="never")]
        with self.assertRaises(LLMError):
            self.agent.process_natural_message(PHONE, "hola")
        self.assertEqual(len(self.provider.calls), 1)


class TestToolLoop(AgentTestCase):
    def test_search_then_add_then_answer(self):
        self.provider.turns = [
            call("searchMenu", query="lasaña alfredo"),
            call("addToCart", itemId="lasagna_alfredo", quantity=2),
            ModelTurn(text="Añadí 2 lasañas."),
        ]
        session = self.sessions.get_session(PHONE)
        result = self.agent.process_natural_message(PHONE, "dos lasañas alfredo", session=session)
        self.assertTrue(result.cart_updated)
        self.assertEqual(session.cart[0].quantity, 2)
        self.assertEqual(result.replies, ["Añadí 2 lasañas."])
        tool_message = self.provider.calls[1]["messages"][-1]
        self.assertEqual(tool_message["role"], "tool")
        self.assertIn("lasagna_alfredo", tool_message["content"])

    def test_display_tool_ends_turn(self):
        self.provider.turns = [call("getMenuItems", categoryId="pizza")]
        result = self.agent.process_natural_message(PHONE, "qué pizzas tienen")
        self.assertEqual(result.show_category, "pizza")
        self.assertEqual(len(self.provider.calls), 1)
        self.assertFalse(result.needs_fallback)

    def test_missing_size_becomes_size_prompt(self):
        self.provider.turns = [call("addToCart", itemId="pizza_pepperoni"), ModelTurn(text="¿Qué tamaño?")]
        result = self.agent.process_natural_message(PHONE, "una pepperoni")
        self.assertEqual(result.size_prompt.item_id, "pizza_pepperoni")
        self.assertEqual(result.size_prompt.sizes, ["Grande", "Familiar"])
        self.assertFalse(result.cart_updated)
        self.assertEqual(result.replies, [])

    def test_tool_round_limit_forces_fallback(self):
        self.provider.turns = [call("searchMenu", query="pizza")] * 4
        result = self.agent.process_natural_message(PHONE, "pizza pizza pizza")
        self.assertTrue(result.needs_fallback)
        self.assertEqual(result.replies, [])
        self.assertEqual(len(self.provider.calls), 4)

    def test_confirmation_resets_session_without_history(self):
        session = self.sessions.get_session(PHONE)
        self.sessions.add_to_cart(PHONE, {"product_id": "lasagna_alfredo", "name": "Lasagna Alfredo",
                                          "unit_price": 21, "menu_item_id": "lasagna_alfredo"}, session=session)
        session.name = "Juan Pérez"
        session.address = "Av. Larco 123"
        session.delivery = DeliveryQuote(location=LatLng(lat=-12.047, lng=-77.043), distance_km=0.07, cost=3.0)
        self.sessions.update_session(PHONE, session)

        self.provider.turns = [call("confirmOrder")]
        result = self.agent.process_natural_message(PHONE, "confirmar")
        self.assertTrue(result.session_reset)
        self.assertEqual(len(result.replies), 1)
        self.assertIn("Pedido confirmado", result.replies[0])
        stored = self.sessions.get_session(PHONE)
        self.assertEqual(stored.cart, [])
        self.assertEqual(stored.history, [])

    def test_raw_confirmation_json_is_rendered(self):
        self.provider.turns = [ModelTurn(text='{"status": "confirmed", "orderCode": "120325sm01", "total": 24}')]
        result = self.agent.process_natural_message(PHONE, "ok")
        self.assertIn("120325sm01", result.replies[0])
        self.assertIn("S/ 24.00", result.replies[0])


if __name__ == "__main__":
    unittest.main()
