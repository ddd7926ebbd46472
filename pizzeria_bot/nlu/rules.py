"""Keyword and regex heuristics for Spanish chat input."""
import re
from typing import Optional

GREETINGS = ["hola", "holaa", "holaaa", "holaaaa", "hi", "hey", "hello", "buenas", "buen dia", "buen día"]

CHECKOUT_COMMANDS = ["go_checkout", "finalizar compra", "checkout", "listo", "eso es todo",
                     "nada mas", "nada más", "ya termine", "ya terminé"]
SHOW_CART_COMMANDS = ["muestra carrito", "muéstrame el carrito", "ver carrito", "ver pedido",
                      "mostrar carrito", "show_cart"]
FIXED_COMMANDS = ["continue_shopping", "edit_order", "clear_cart", "ver menu", "show_menu", "confirmar"]
ACKNOWLEDGEMENTS = ["ok", "si", "sí", "gracias", "confirmar", "listo", "finalizar", "vale",
                    "eso es todo", "es todo", "seria todo", "sería todo"]

ADDRESS_CUES = re.compile(r"(jr\.?|jiron|jir[oó]n|calle|av\.?|avenida|pasaje|pje|mz|manzana|lote|#)", re.IGNORECASE)
STREET_NUMBER = re.compile(r"[a-záéíóúüñ]{3,}\s+\d{1,6}", re.IGNORECASE)
ORDER_WORDS = re.compile(
    r"(pizza|piza|lasagna|lasana|lasaña|gaseosa|americana|familiar|grande|pepperoni|jam[oó]n|chorizo"
    r"|bebida|pepsi|coca|papa|extra|pedido|quiero)",
    re.IGNORECASE,
)
NAME_INTRO = re.compile(r"(?:me llamo|mi nombre es|soy)\s+([a-záéíóúñü\s]{2,50})", re.IGNORECASE)

SENTENCE_ADDRESS_PATTERNS = [
    re.compile(
        r"(?:\bllegue\s+a\b|\bentregar\s+en\b|\benv[ií]a(?:r|s)?\s+a\b|\bpara\s+entrega\s+en\b"
        r"|\bdirecci[oó]n\s*:?|\ben\s+la\b|\ben\b)\s+(.+)",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:a\s+)?((?:jr\.?|jiron|jir[oó]n|calle|av\.?|avenida|pasaje|pje)\s+.+)", re.IGNORECASE),
]
ORDER_TAIL_SPLIT = re.compile(r"\s+a\s+", re.IGNORECASE)


def _phrase_in(text: str, phrase: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(phrase)}(?!\w)", text) is not None


def looks_like_order(text: str) -> bool:
    return bool(text) and ORDER_WORDS.search(text) is not None


def has_address_cue(text: str) -> bool:
    return bool(text) and ADDRESS_CUES.search(text) is not None


def looks_like_address(text: str) -> bool:
    """Digit plus a street cue (or word-then-number), excluding acknowledgements and links."""
    if not text or len(text) < 10:
        return False
    lowered = text.lower()
    if any(_phrase_in(lowered, w) for w in ACKNOWLEDGEMENTS):
        return False
    if "http://" in lowered or "https://" in lowered:
        return False
    has_number = re.search(r"\d", text) is not None
    has_street_cue = has_address_cue(text) or STREET_NUMBER.search(text) is not None
    return has_number and has_street_cue


def is_greeting(text: str) -> bool:
    return (text or "").strip().lower() in GREETINGS


def is_greeting_only(raw_text: Optional[str], normalized_input: str, fresh_session: bool) -> bool:
    if not fresh_session or not is_greeting(normalized_input):
        return False
    raw_text = raw_text or ""
    return (
        not looks_like_order(raw_text)
        and not has_address_cue(raw_text)
        and len(raw_text.split()) <= 3
    )


def is_command_text(text: str) -> bool:
    """Greetings, fixed commands and acknowledgements; never names or addresses."""
    lowered = (text or "").strip().lower()
    return (
        lowered in GREETINGS
        or lowered in CHECKOUT_COMMANDS
        or lowered in SHOW_CART_COMMANDS
        or lowered in FIXED_COMMANDS
        or lowered in ACKNOWLEDGEMENTS
    )


def extract_address_from_sentence(text: str) -> Optional[str]:
    """Pull the address clause out of "envíalo a ...", "dirección: ...", "av. ..." style sentences."""
    if not text:
        return None
    stripped = text.strip()
    for pattern in SENTENCE_ADDRESS_PATTERNS:
        m = pattern.search(stripped)
        if m and m.group(1).strip():
            return m.group(1).strip()
    return None


def extract_order_tail_address(text: str) -> Optional[str]:
    """For "una pizza grande a Jr. Lima 123", the clause after the last " a " if it reads as an address."""
    if not looks_like_order(text):
        return None
    parts = ORDER_TAIL_SPLIT.split(text)
    if len(parts) < 2:
        return None
    tail = parts[-1].strip()
    return tail if looks_like_address(tail) else None
