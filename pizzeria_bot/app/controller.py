"""Message router: the per-message conversation state machine.

Each inbound WhatsApp message walks an ordered list of checks. Deterministic
branches (buttons, locations, addresses, names, fixed commands) answer
directly; everything else goes to the ordering agent. The result is an
ordered list of outbound messages; sending them is the caller's job.
"""
import re
from typing import List, Optional, Tuple

from ..agents.order_agent import OrderAgent
from ..agents.tools import cart_line_for
from ..data.menu_store import MenuItem, requires_size, resolve_size
from ..nlu.entity_extractor import (
    NameContext,
    clean_name,
    find_address_continuation,
    find_name_candidate,
    is_acceptable_name,
)
from ..nlu.llm_router import classify_user_text, extract_address_and_name, validate_address, validate_name
from ..nlu.rules import CHECKOUT_COMMANDS, SHOW_CART_COMMANDS, is_greeting, is_greeting_only, looks_like_address
from ..schemas.io_models import AgentResult, IncomingMessage, OutboundMessage, TextMessage
from ..schemas.session_models import LatLng, PendingAddressChange, Session
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from . import postprocess as out
from .config import Config
from .delivery import coords_from_maps_url, extract_first_url, is_maps_url, parse_coords_from_text, quote_delivery
from .prompt_builder import WELCOME_NEW
from .session import ProcessedMessageLog, SessionManager

logger = get_logger("router")

CATEGORIES = ("pizza", "lasagna", "drink", "extra")


def extract_input(message: IncomingMessage) -> Optional[str]:
    """Button/list id first, then button payload, then the text (lowercased unless it holds a link)."""
    interactive = message.interactive
    if interactive and interactive.button_reply and interactive.button_reply.id:
        return interactive.button_reply.id
    if interactive and interactive.list_reply and interactive.list_reply.id:
        return interactive.list_reply.id
    if message.button and message.button.payload:
        return message.button.payload
    raw_text = message.text.body.strip() if message.text and message.text.body else None
    if not raw_text:
        return None
    if "http://" in raw_text or "https://" in raw_text:
        return raw_text
    return raw_text.lower()


def parse_category_payload(payload: str) -> Tuple[Optional[str], int]:
    """``cat_<id>`` or ``cat_<id>_<page>``."""
    if not payload.startswith("cat_"):
        return None, 0
    body = payload[len("cat_"):]
    parts = body.split("_")
    page = 0
    if len(parts) > 1 and parts[-1].isdigit():
        page = int(parts[-1])
        body = "_".join(parts[:-1])
    return (body if body in CATEGORIES else None), page


def parse_size_payload(payload: str) -> Optional[Tuple[str, Optional[str]]]:
    """``size_<size>_<itemId>`` or bare ``size_<size>``."""
    if not payload.startswith("size_"):
        return None
    body = payload[len("size_"):]
    if not body:
        return None
    size, _, item_id = body.partition("_")
    if not size:
        return None
    return size, (item_id or None)


def parse_product_payload(payload: str) -> Optional[Tuple[str, Optional[str]]]:
    """``prod_<itemId>`` or ``prod_<itemId>__<size>``."""
    if not payload.startswith("prod_"):
        return None
    body = payload[len("prod_"):]
    item_id, _, size = body.partition("__")
    if not item_id:
        return None
    return item_id, (size or None)


class RouterTurn:
    """State of one inbound message: the session, its dirty flag and the reply plan."""

    def __init__(self, session_manager: SessionManager, message: IncomingMessage):
        self.session_manager = session_manager
        self.message = message
        self.phone = message.from_
        self.session: Session = session_manager.get_session(self.phone)
        self.dirty = False
        self.replies: List[OutboundMessage] = []

    def send(self, *messages: OutboundMessage):
        self.replies.extend(messages)

    def text(self, body: str):
        self.replies.append(TextMessage(body=body))

    def touch(self):
        self.dirty = True

    def persist(self):
        if self.dirty:
            self.session_manager.update_session(self.phone, self.session)
            self.dirty = False


class Controller:
    def __init__(self, session_manager: SessionManager, menu_store, agent: OrderAgent,
                 processed_log: Optional[ProcessedMessageLog] = None):
        self.session_manager = session_manager
        self.menu_store = menu_store
        self.agent = agent
        self.processed_log = processed_log or ProcessedMessageLog()

    @property
    def provider(self):
        return self.agent.provider

    def handle_incoming(self, message: IncomingMessage) -> List[OutboundMessage]:
        """Process one inbound message and return the replies to send, in order."""
        if not self.processed_log.mark_seen(message.id):
            logger.info("Duplicate message %s ignored", message.id)
            return []

        turn = RouterTurn(self.session_manager, message)
        try:
            self._route(turn)
        finally:
            turn.persist()
        return turn.replies

    # ---- helpers ----

    def _category_menu(self, body: str = "Aquí tienes nuestro menú 👇", section_title: str = "Menú"):
        return out.category_menu(self.menu_store.get_categories(), body, section_title)

    @staticmethod
    def _ready_for_checkout(s: Session) -> bool:
        return bool(s.cart and s.name and s.final_address and s.delivery)

    def _set_name(self, t: RouterTurn, name: str) -> bool:
        """Store the name; returns True when the checkout summary was sent."""
        s = t.session
        s.name = clean_name(name)
        s.waiting_for_name = False
        t.touch()
        logger.info("Captured name for %s", mask_pii(t.phone))
        if self._ready_for_checkout(s):
            t.send(*out.checkout_summary(s))
            return True
        return False

    def _address_saved(self, t: RouterTurn, updated: bool = False):
        s = t.session
        s.waiting_for_name = not s.name
        prefix = "Dirección actualizada a" if updated else "Dirección guardada:"
        suffix = " Solo me falta tu nombre para confirmar." if s.waiting_for_name else ""
        t.text(f"{prefix} {s.address}.{suffix}")
        if s.cart and s.name:
            t.send(*out.checkout_summary(s))

    def _propose_address(self, t: RouterTurn, address: str):
        t.session.pending_address_change = PendingAddressChange(address_text=address, suggested_text=address)
        t.touch()
        t.text(
            f'Dirección recibida: "{address}". Ahora comparte la ubicación de ese punto '
            "(envía tu ubicación o un enlace de Google Maps) para calcular el delivery."
        )

    def _apply_location(self, t: RouterTurn, coords: LatLng):
        s = t.session
        quote = quote_delivery(coords)
        s.delivery = quote
        pending = s.pending_address_change or PendingAddressChange()
        pending.location = coords
        pending.distance_km = quote.distance_km
        pending.cost = quote.cost
        pending.awaiting_choice = False
        s.pending_address_change = pending
        t.touch()
        t.send(out.delivery_quote_text(s))

        if s.promote_pending_address():
            self._address_saved(t)
            return
        s.waiting_for_name = not s.name
        t.text("Ahora dime tu dirección exacta y referencia para esta ubicación (ej: calle, número, dpto, referencia).")

    def _add_product(self, t: RouterTurn, item: MenuItem, size: Optional[str]):
        line = cart_line_for(item, size)
        self.session_manager.add_to_cart(t.phone, line, 1, session=t.session)
        t.touch()
        t.send(out.cart_summary(t.session, prefix=f"Añadí 1x {line['name']} a tu carrito."), out.cart_buttons())

    # ---- routing ----

    def _route(self, t: RouterTurn):
        s = t.session
        message = t.message
        raw_text = message.text.body.strip() if message.text and message.text.body else None
        raw_input = extract_input(message)
        normalized = "ver menu" if raw_input == "show_menu" else (raw_input or "")
        fresh = s.is_fresh

        # welcome
        if not s.name and not s.history and not s.has_welcomed and (raw_input or message.location):
            t.text(WELCOME_NEW)
            s.has_welcomed = True
            t.touch()
            if is_greeting_only(raw_text, normalized, fresh):
                t.send(self._category_menu())
                return

        pending = s.pending_address_change
        expects_address_text = pending is not None and not pending.address_text

        # name gate
        if s.waiting_for_name and raw_text and not (expects_address_text and find_address_continuation(raw_text)):
            candidate = raw_text.strip()
            name = candidate if is_acceptable_name(candidate) else validate_name(self.provider, raw_text)
            if not name:
                t.text("No logré capturar tu nombre. ¿Me lo repites, por favor?")
                return
            if self._set_name(t, name):
                return

        # address gate
        if s.waiting_for_address and raw_text:
            address = find_address_continuation(raw_text) or validate_address(self.provider, raw_text)
            if not address:
                t.text("No logré entender la dirección. Por favor envíala con calle, número y referencia.")
                return
            pending = s.pending_address_change or PendingAddressChange()
            pending.address_text = address
            pending.suggested_text = address
            pending.awaiting_choice = False
            if pending.location is None and s.delivery is not None:
                pending.location = s.delivery.location
                pending.distance_km = s.delivery.distance_km
                pending.cost = s.delivery.cost
            s.pending_address_change = pending
            s.waiting_for_address = False
            t.touch()
            if s.promote_pending_address():
                self._address_saved(t)
            else:
                t.text(f'Dirección guardada: "{address}". Ahora comparte tu ubicación (WhatsApp o Maps) '
                       "para calcular el delivery.")
            return

        # shared location
        if message.location:
            self._apply_location(t, LatLng(lat=message.location.latitude, lng=message.location.longitude))
            return

        if not raw_input:
            t.send(TextMessage(body=out.NO_INPUT_TEXT), out.fallback_buttons())
            return

        # coordinates or a maps link in the text
        coords = parse_coords_from_text(raw_input)
        url = extract_first_url(raw_text or raw_input)
        if coords is None and is_maps_url(url):
            coords = coords_from_maps_url(url)
        if coords is not None:
            self._apply_location(t, coords)
            return
        if is_maps_url(url):
            t.text(
                "No pude leer tu ubicación desde el enlace de Maps 😅. Comparte la ubicación directamente desde "
                'WhatsApp o envía las coordenadas en formato "lat,lng" (ej: -12.0538, -75.2092).'
            )
            return

        # free-text address without a pending change
        if s.pending_address_change is None and raw_text and not message.is_structured and looks_like_address(raw_text):
            extraction = extract_address_and_name(self.provider, raw_text)
            if extraction["name"] and not s.name:
                s.name = clean_name(extraction["name"])
                s.waiting_for_name = False
                t.touch()
            if extraction["address"]:
                self._propose_address(t, extraction["address"])
                return

        # free-text name
        address_source = raw_text
        if not s.name and raw_text and not message.is_structured:
            ctx = NameContext(
                text=raw_text,
                has_pending_address=s.pending_address_change is not None,
                waiting_for_name=s.waiting_for_name,
            )
            candidate = find_name_candidate(ctx)
            if candidate is not None:
                if is_acceptable_name(candidate.name):
                    if self._set_name(t, candidate.name):
                        return
                    address_source = candidate.remainder
            elif re.search(r"\d", raw_text):
                label = classify_user_text(self.provider, raw_text)
                if label == "name":
                    if self._set_name(t, raw_text.strip()):
                        return
                elif label == "address" and s.pending_address_change is None:
                    self._propose_address(t, raw_text.strip())
                    return

        # operator debug mode
        if normalized == f"!dev {Config.DEV_PASSPHRASE}".lower():
            s.is_dev_mode = True
            t.touch()
            t.text("🕵️‍♂️ MODO DEBUG ACTIVADO\nAhora te mostraré mis variables internas y razonamiento.")
            return
        if normalized == "!dev off":
            s.is_dev_mode = False
            t.touch()
            t.text("👋 Modo debug desactivado. Volviendo a vender pizzas.")
            return

        category, page = parse_category_payload(normalized)
        size_selection = parse_size_payload(normalized)
        product_selection = parse_product_payload(normalized)
        is_payload = normalized.startswith(("cat_", "prod_", "size_"))

        # pending address continuation
        pending = s.pending_address_change
        if pending is not None and not is_payload:
            if not pending.address_text and address_source:
                address = find_address_continuation(address_source)
                if address:
                    pending.address_text = address
                    pending.suggested_text = address
                    pending.awaiting_choice = False
                    t.touch()
                    if s.promote_pending_address():
                        self._address_saved(t)
                    else:
                        t.text(f'Dirección recibida: "{address}". Ahora comparte la ubicación de ese punto '
                               "(envía tu ubicación o un enlace de Google Maps) para calcular el delivery.")
                    return
                logger.info("No address in pending continuation, handing over to the agent")
            if pending.address_text and pending.location is None:
                t.text("Me falta la ubicación de esa dirección para calcular el delivery. "
                       "Por favor comparte tu ubicación o un enlace de Google Maps.")
                return
            if pending.address_text and pending.location is not None:
                pending.awaiting_choice = False
                s.promote_pending_address()
                t.touch()
                self._address_saved(t, updated=True)
                return

        # fixed commands
        if normalized == "continue_shopping":
            t.text("Perfecto, sigamos. Elige del menú 👇")
            t.send(self._category_menu())
            return

        has_context = bool(s.cart or s.name or s.address)
        if not fresh and has_context and is_greeting(normalized):
            t.text("Seguimos con tu pedido. Puedes ver el carrito, editar o finalizar cuando gustes.")
            t.send(out.cart_buttons())
            return

        if normalized in CHECKOUT_COMMANDS:
            t.send(*out.checkout_summary(s))
            t.touch()
            return
        if normalized == "edit_order":
            t.send(out.edit_order_buttons())
            return
        if normalized in SHOW_CART_COMMANDS:
            t.send(out.cart_summary(s), out.cart_buttons())
            return

        if product_selection is not None:
            item = self.menu_store.get_item(product_selection[0])
            if item is not None:
                size = resolve_size(item, product_selection[1])
                if size is None and requires_size(item):
                    t.send(out.size_choice(item.id, item.name, list(item.prices)))
                    return
                self._add_product(t, item, size or next(iter(item.prices), None))
                return

        if normalized == "clear_cart":
            self.session_manager.clear_cart(t.phone, session=s)
            t.touch()
            t.text("🗑️ Tu carrito ha sido vaciado completamente.")
            t.send(self._category_menu("¿Qué se te antoja pedir ahora? 👇", "Categorías"))
            return

        if size_selection is not None and size_selection[1]:
            item = self.menu_store.get_item(size_selection[1])
            if item is not None:
                size = resolve_size(item, size_selection[0])
                if size is None:
                    t.text("Ese tamaño no está disponible.")
                    return
                self._add_product(t, item, size)
                return

        # everything else: categories, the menu, or the agent
        if category:
            result = AgentResult(show_category=category)
        elif normalized == "ver menu":
            result = AgentResult(show_menu=True)
        else:
            agent_text = size_selection[0] if size_selection is not None else normalized
            result = self.agent.process_natural_message(t.phone, agent_text, session=s)
            if result.session_reset:
                t.session = self.session_manager.get_session(t.phone)
                t.dirty = False
            else:
                t.touch()
        self._render(t, result, page if category else 0)

    def _render(self, t: RouterTurn, result: AgentResult, page: int):
        s = t.session
        if result.show_category:
            items = self.menu_store.get_items_by_category(result.show_category)
            t.send(out.category_page(result.show_category, items, page))
        if result.size_prompt is not None:
            prompt = result.size_prompt
            t.send(out.size_choice(prompt.item_id, prompt.item_name, prompt.sizes))
        if result.cart_updated and s.cart:
            t.send(out.cart_summary(s), out.cart_buttons())
        if result.show_cart and not result.cart_updated:
            t.send(out.cart_summary(s), out.cart_buttons())
        if result.needs_fallback:
            t.send(TextMessage(body=out.FALLBACK_TEXT), out.fallback_buttons())
        for reply in result.replies:
            t.send(TextMessage(body=reply, reply_to=t.message.id))
        if result.show_menu and not result.session_reset:
            t.send(self._category_menu("Elige una categoría 🍕"))
