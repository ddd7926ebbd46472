"""Builders for the outbound WhatsApp messages (text, buttons, lists)."""
from typing import Dict, List, Optional

from ..data.menu_store import MenuItem
from ..schemas.io_models import Button, ButtonsMessage, ListMessage, ListRow, TextMessage
from ..schemas.session_models import Session
from .prompt_builder import format_money

ITEMS_PER_PAGE = 9
TITLE_MAX = 24
DESCRIPTION_MAX = 70

FALLBACK_TEXT = "Disculpa, no entendí tu último mensaje 😅"
NO_INPUT_TEXT = "No entendí eso 😅. Usa los botones para continuar."
ERROR_TEXT = "Tuvimos un problema procesando tu mensaje 😓. Inténtalo de nuevo en un momento."


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit - 1]}…"


def _short_size(size: str) -> str:
    lowered = size.lower()
    if lowered.startswith("fam"):
        return "F"
    if lowered.startswith("gran"):
        return "G"
    return size


def _description(overflow: str, item: MenuItem, price_text: str) -> str:
    parts = [f"{overflow}." if overflow else "", item.description, price_text]
    text = " ".join(p for p in parts if p)
    if len(text) > DESCRIPTION_MAX:
        text = f"{text[:DESCRIPTION_MAX - 3]}…"
    return text


def product_rows(item: MenuItem) -> List[ListRow]:
    """List rows for one product; drinks with several sizes get one row per size."""
    title, overflow = item.name, ""
    if len(item.name) > TITLE_MAX:
        title = f"{item.name[:TITLE_MAX - 1]}…"
        overflow = item.name[TITLE_MAX - 1:].strip()

    if item.category == "drink" and len(item.prices) > 1:
        return [
            ListRow(
                id=f"prod_{item.id}__{size}",
                title=truncate(f"{title} {size}", TITLE_MAX),
                description=_description(overflow, item, f"{size}: {price:g}"),
            )
            for size, price in item.prices.items()
        ]

    price_text = " ".join(f"{_short_size(size)}:{price:g}" for size, price in item.prices.items())
    return [ListRow(id=f"prod_{item.id}", title=truncate(title, TITLE_MAX),
                    description=_description(overflow, item, price_text))]


def category_page(category: str, items: List[MenuItem], page: int = 0) -> ListMessage:
    """One page of a category listing, with a "see more" row when rows remain."""
    rows = [row for item in items for row in product_rows(item)]
    start = page * ITEMS_PER_PAGE
    end = start + ITEMS_PER_PAGE
    page_rows = rows[start:end]
    if len(rows) > end:
        page_rows.append(ListRow(id=f"cat_{category}_{page + 1}", title="➡️ Ver más...",
                                 description="Ver siguientes productos"))
    return ListMessage(body=f"Elige una opción ({page + 1}) 👇", button_label="Ver opciones",
                       section_title="Opciones", rows=page_rows)


def category_menu(categories: List[Dict[str, str]], body: str = "Aquí tienes nuestro menú 👇",
                  section_title: str = "Menú") -> ListMessage:
    return ListMessage(
        body=body,
        button_label="Ver Menú",
        section_title=section_title,
        rows=[ListRow(id=f"cat_{c['id']}", title=c["title"]) for c in categories],
    )


def cart_lines(session: Session) -> str:
    return "\n".join(
        f"• {item.quantity}x {item.name} ({format_money(item.unit_price)})" for item in session.cart
    )


def cart_total_with_delivery(session: Session) -> float:
    return session.cart_total + (session.delivery.cost if session.delivery else 0.0)


def cart_summary(session: Session, prefix: Optional[str] = None) -> TextMessage:
    if not session.cart:
        return TextMessage(body="Tu carrito está vacío.")
    body = f"🛒 Resumen del Carrito:\n{cart_lines(session)}\n\n💰 Total: {format_money(cart_total_with_delivery(session))}"
    if prefix:
        body = f"{prefix}\n\n{body}"
    return TextMessage(body=body)


def cart_buttons() -> ButtonsMessage:
    return ButtonsMessage(
        body="¿Deseas seguir comprando, modificar o finalizar tu pedido?",
        buttons=[
            Button(id="continue_shopping", title="📋 Seguir comprando"),
            Button(id="edit_order", title="🛠️ Modificar pedido"),
            Button(id="go_checkout", title="✅ Finalizar compra"),
        ],
    )


def edit_order_buttons() -> ButtonsMessage:
    return ButtonsMessage(
        body="🛠️ ¿Qué deseas hacer con tu pedido?",
        buttons=[
            Button(id="clear_cart", title="🗑️ Vaciar Carrito"),
            Button(id="continue_shopping", title="➕ Agregar Productos"),
            Button(id="go_checkout", title="🔙 Volver / Pagar"),
        ],
    )


def fallback_buttons() -> ButtonsMessage:
    return ButtonsMessage(
        body="¿Qué te gustaría hacer?",
        buttons=[
            Button(id="continue_shopping", title="Seguir comprando"),
            Button(id="show_cart", title="🛒 Ver Carrito"),
            Button(id="go_checkout", title="✅ Finalizar compra"),
        ],
    )


def size_choice(item_id: str, item_name: str, sizes: List[str]):
    """Buttons for up to three sizes, a list beyond that."""
    if len(sizes) <= 3:
        return ButtonsMessage(
            body=f"Elige el tamaño para {item_name}",
            buttons=[Button(id=f"size_{s}_{item_id}", title=s) for s in sizes],
        )
    return ListMessage(
        body=f"Elige el tamaño para {item_name}",
        button_label="Tamaños",
        section_title="Tamaños",
        rows=[ListRow(id=f"size_{s}_{item_id}", title=truncate(s, TITLE_MAX)) for s in sizes],
    )


def delivery_quote_text(session: Session) -> TextMessage:
    quote = session.delivery
    return TextMessage(
        body=(
            "¡Ubicación recibida! 📍\n"
            f"Distancia a nuestro local: {quote.distance_km:.2f} km.\n"
            f"El costo de envío es: {format_money(quote.cost)}."
        )
    )


def checkout_summary(session: Session) -> List:
    """Checkout prompt for the current session; may set waiting flags on it."""
    if not session.cart:
        return [TextMessage(body="Tu carrito está vacío. Elige algo del menú para continuar.")]
    if not session.name:
        session.waiting_for_name = True
        return [TextMessage(body="Para generar tu pedido, primero necesito tu nombre completo. ¿Cómo te llamas?")]
    if not session.final_address or session.delivery is None:
        if not session.final_address:
            session.waiting_for_address = True
        return [TextMessage(body=(
            f"¡Gracias {session.name}! Ahora necesito saber dónde entregarlo. Escribe tu dirección "
            "y comparte tu ubicación (Maps) para calcular el delivery."
        ))]

    delivery_cost = session.delivery.cost
    return [TextMessage(body=(
        "🔒 Revisemos tu pedido:\n\n"
        f"🛒 Pedido:\n{cart_lines(session)}\n\n"
        f"📦 Delivery: {format_money(delivery_cost)}\n"
        f"💰 Total: {format_money(cart_total_with_delivery(session))}\n"
        f"📍 Entrega: {session.final_address}\n"
        f"👤 Cliente: {session.name}\n\n"
        '¿Confirmo el pedido? Responde "confirmar" o "sí" para continuar.'
    ))]
