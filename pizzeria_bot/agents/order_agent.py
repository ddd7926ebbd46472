"""Natural-language ordering agent.

Sends the conversation to the chat model with the tool declarations,
executes the tools the model picks, and loops until the model answers in
text, a display tool ends the turn, or an order confirmation resets the
session.
"""
import json
import time
from typing import Optional

from ..app.config import Config
from ..app.generate import (
    ChatProvider,
    assistant_tool_message,
    get_chat_provider,
    send_with_retry,
    tool_result_message,
)
from ..app.prompt_builder import build_turn_text, format_confirmation, get_system_instruction
from ..schemas.io_models import AgentResult, SizePrompt
from ..schemas.session_models import HistoryEntry, Session
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .tools import ToolExecutor, build_tool_declarations

logger = get_logger("agent")


class OrderAgent:
    def __init__(self, session_manager, menu_store, order_store, customer_store,
                 provider: Optional[ChatProvider] = None, max_tool_rounds: Optional[int] = None,
                 sleep=time.sleep):
        self.session_manager = session_manager
        self.menu_store = menu_store
        self.executor = ToolExecutor(session_manager, menu_store, order_store, customer_store)
        self._provider = provider
        self.max_tool_rounds = Config.MAX_TOOL_ROUNDS if max_tool_rounds is None else max_tool_rounds
        self.sleep = sleep

    @property
    def provider(self) -> ChatProvider:
        if self._provider is None:
            self._provider = get_chat_provider()
        return self._provider

    def _build_messages(self, session: Session, phone: str, text: str):
        history = session.history[-Config.MAX_HISTORY_MESSAGES:] if Config.MAX_HISTORY_MESSAGES else []
        return (
            [{"role": "system", "content": get_system_instruction()}]
            + [{"role": h.role, "content": h.content} for h in history]
            + [{"role": "user", "content": build_turn_text(session, phone, text)}]
        )

    def process_natural_message(self, phone: str, text: str, session: Optional[Session] = None) -> AgentResult:
        """Run one user turn through the model and its tools.

        When ``session`` is given it is mutated in place and the caller
        persists it; otherwise the session is loaded and saved here. If the
        turn confirmed an order (``result.session_reset``) the store already
        holds a fresh session and ``session`` must be discarded.

        Args:
            phone: customer phone number (session key)
            text: normalized user text
            session: the caller's in-memory session, if any

        Returns:
            AgentResult describing what the router should render
        """
        owns_session = session is None
        if owns_session:
            session = self.session_manager.get_session(phone)

        result = AgentResult()
        messages = self._build_messages(session, phone, text)
        tools = build_tool_declarations(self.menu_store.get_menu())
        temperature = 0 if session.is_dev_mode else 0.5

        turn = send_with_retry(self.provider, messages, tools, temperature, sleep=self.sleep)
        used_tool = False
        stop_conversation = False
        stop_after_tools = False
        rounds = 0

        while turn.tool_calls:
            rounds += 1
            if rounds > self.max_tool_rounds:
                logger.warning("Tool round limit (%d) reached for %s", self.max_tool_rounds, mask_pii(phone))
                result.needs_fallback = True
                turn.text = None
                break

            used_tool = True
            logger.info("Model called tools: %s", [(c.name, c.arguments) for c in turn.tool_calls])
            messages.append(assistant_tool_message(turn))

            for call in turn.tool_calls:
                outcome = self.executor.execute(phone, session, call.name, call.arguments)
                meta = outcome.meta
                if meta.show_menu:
                    result.show_menu = True
                    stop_after_tools = True
                if meta.show_category:
                    result.show_category = meta.show_category
                    stop_after_tools = True
                if meta.show_cart:
                    result.show_cart = True
                    stop_after_tools = True
                if meta.cart_updated:
                    result.cart_updated = True
                if meta.delivery_updated:
                    result.delivery_updated = True
                if outcome.status == "need_size":
                    result.size_prompt = SizePrompt(
                        item_id=outcome.response["itemId"],
                        item_name=outcome.response["itemName"],
                        sizes=outcome.response["sizes"],
                    )
                if meta.confirmation_message:
                    result.replies.append(meta.confirmation_message)
                if meta.stop_conversation:
                    stop_conversation = True
                if meta.session_reset:
                    result.session_reset = True
                messages.append(tool_result_message(call, outcome.response))

            if stop_conversation or stop_after_tools:
                break
            turn = send_with_retry(self.provider, messages, tools, temperature, sleep=self.sleep)

        if result.size_prompt is not None:
            result.cart_updated = False

        final_text = (turn.text or "").strip()
        suppressed = (
            stop_conversation or stop_after_tools or result.size_prompt is not None or result.needs_fallback
        )
        if final_text and not suppressed:
            result.replies.append(self._render_text(final_text))

        # after a reset the stored session is the fresh one; the caller reloads it
        if not result.session_reset:
            session.history.append(HistoryEntry(role="user", content=text))
            if final_text:
                session.history.append(HistoryEntry(role="assistant", content=final_text))
            if owns_session:
                self.session_manager.update_session(phone, session)

        nothing_to_show = not (
            result.replies or result.show_menu or result.show_cart or result.show_category
            or result.cart_updated or result.delivery_updated or result.size_prompt
        )
        if nothing_to_show:
            result.needs_fallback = True
        if not used_tool and not result.replies:
            result.handled = False
        return result

    @staticmethod
    def _render_text(text: str) -> str:
        """Model text, unless it is a raw confirmOrder payload."""
        try:
            parsed = json.loads(text)
        except ValueError:
            return text
        if isinstance(parsed, dict) and parsed.get("status") == "confirmed":
            return format_confirmation(parsed)
        return text
