"""Prompt construction for the ordering assistant.

The system instruction is fixed; each turn is framed with a short state
block (customer data, cart) so the model does not have to re-derive it
from the history.
"""
import json
from typing import Any, Dict, List

from ..schemas.session_models import Session

RESTAURANT_NAME = "Pizzería San Marzano"

SYSTEM_INSTRUCTIONS = f"""
Eres el asistente de pedidos por WhatsApp de "{RESTAURANT_NAME}".
Tomas pedidos, respondes dudas sobre la carta y consultas el estado de los pedidos.

Reglas:
1. La carta cambia a diario en la base de datos. No supongas qué se vende.
2. Ante cualquier producto que el cliente mencione, llama primero a searchMenu.
   - Si hay resultados, ofrécelos con su precio.
   - Si no hay resultados, responde corto: "Por ahora no tenemos <producto>".
   - No sugieras alternativas que no hayas buscado en este mismo turno.
3. Para agregar productos usa addToCart con el itemId exacto del resultado. Las pizzas y bebidas
   con varios tamaños necesitan size; si falta, pregunta el tamaño.
4. Pizza mitad y mitad: usa addMixedPizza con los nombres de ambos sabores (Grande o Familiar).
5. El costo de envío lo calcula el sistema cuando el cliente comparte su ubicación. Si preguntan por
   el delivery, pide que compartan la ubicación de WhatsApp o un enlace de Google Maps.
6. Pide nombre y dirección solo al preparar el checkout (startCheckout) y guárdalos con setDeliveryDetails.
7. Cuando el cliente confirme, llama a confirmOrder. Nunca inventes un código de pedido.
8. Sé amable y directo, con algún emoji ocasional 🍕. Responde siempre en español.
""".strip()

WELCOME_NEW = f"👋 ¡Bienvenid@ a {RESTAURANT_NAME}! 🍕 ¿Qué se te antoja pedir?"


def format_money(amount: float) -> str:
    return f"S/ {amount:.2f}"


def get_system_instruction() -> str:
    return SYSTEM_INSTRUCTIONS


def build_state_context(session: Session) -> str:
    lines: List[str] = []
    if session.name and session.address:
        lines.append(f"Cliente registrado: {session.name} - {session.address}")
    else:
        lines.append(
            "Cliente nuevo o con datos incompletos. Toma el pedido con las herramientas y pide "
            "nombre/dirección/ubicación solo al preparar el checkout."
        )

    if session.cart:
        lines.append("Carrito actual:")
        for idx, item in enumerate(session.cart, start=1):
            lines.append(f"{idx}. {item.name} x{item.quantity} - S/{item.line_total:.2f}")
        lines.append(f"Subtotal: S/{session.cart_total:.2f}")
    else:
        lines.append("Carrito actual vacío.")

    if session.name and session.final_address and session.cart:
        lines.append("")
        lines.append("--- ESTADO CRÍTICO DEL PEDIDO ---")
        lines.append("✅ DATOS COMPLETOS: ya tienes nombre, dirección y productos.")
        lines.append(
            '⚠️ INSTRUCCIÓN PRIORITARIA: si el cliente dice "sí", "ok", "confirmar" o "envíalo", '
            "llama a confirmOrder de inmediato. No vuelvas a preguntar ni a resumir."
        )
    return "\n".join(lines)


def build_debug_request(session: Session, text: str) -> str:
    debug_info = json.dumps(
        {
            "cartSize": len(session.cart),
            "cartItems": [i.name for i in session.cart],
            "userData": {"name": session.name, "address": session.address},
            "deliveryPhase": session.delivery_phase.value,
            "historyCount": len(session.history),
            "lastMsg": text,
        },
        ensure_ascii=False,
        indent=2,
    )
    return (
        "🚨 MODO DEBUG ACTIVO 🚨\n"
        "El usuario es el DESARROLLADOR. No actúes como vendedor.\n"
        "Tu tarea:\n"
        f'1. Analiza el mensaje: "{text}"\n'
        "2. Indica qué herramienta llamarías normalmente y por qué.\n"
        "3. Señala cualquier inconsistencia en los datos.\n"
        "4. Sé breve y técnico.\n\n"
        f"DATOS INTERNOS ACTUALES:\n{debug_info}"
    )


def build_turn_text(session: Session, phone: str, text: str) -> str:
    if session.is_dev_mode:
        return build_debug_request(session, text)
    return f"Número detectado: +{phone}\n{build_state_context(session)}\n\nUsuario dice: {text}"


def format_confirmation(payload: Dict[str, Any]) -> str:
    """Canonical order confirmation text from a ``confirmOrder`` result payload."""
    lines = ["🙌 ¡Pedido confirmado! Gracias por tu compra."]
    code = payload.get("orderCode") or payload.get("orderId")
    if code:
        lines.append(f"🧾 Pedido: {code}")
    for item in payload.get("summary") or []:
        lines.append(f"• {item.get('quantity')}x {item.get('name')} ({format_money(float(item.get('lineTotal') or 0))})")
    if payload.get("deliveryCost") is not None:
        lines.append(f"📦 Delivery: {format_money(float(payload['deliveryCost']))}")
    lines.append(f"💰 Total: {format_money(float(payload.get('total') or 0))}")
    if payload.get("address"):
        lines.append(f"📍 Entrega: {payload['address']}")
    if payload.get("name"):
        lines.append(f"👤 Cliente: {payload['name']}")
    return "\n".join(lines)
