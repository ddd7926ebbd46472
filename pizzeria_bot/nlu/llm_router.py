"""Small LLM-backed validators used when the heuristics are not conclusive.

Every helper is best-effort: provider failures and malformed (non-JSON)
answers are logged and reported as "nothing extracted".
"""
import json
from typing import Any, Dict, Optional

from ..app.generate import ChatProvider, LLMError
from ..utils.logger import get_logger

logger = get_logger("nlu")

NAME_PROMPT = '''¿Este texto contiene un nombre personal real? Devuelve solo JSON: {{ "isValid": boolean, "extractedName": string | null }}.
Texto: """{text}"""'''

ADDRESS_PROMPT = '''¿Este texto contiene una dirección o referencia válida para entrega? Devuelve solo JSON: {{ "isValid": boolean, "address": string | null }}.
Texto: """{text}"""'''

CLASSIFY_PROMPT = '''Clasifica el texto en una sola etiqueta: "name", "address", "order" u "other".
Devuelve solo la etiqueta.
Texto: """{text}"""'''

EXTRACT_PROMPT = '''Extrae en JSON: {{ "address": string, "name": string | null }} del texto: """{text}""".
Devuelve solo el JSON válido, sin texto adicional. Si no hay nombre, usa null.'''


def _extract_json(raw: str) -> Dict[str, Any]:
    start, end = raw.find("{"), raw.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in model output")
    parsed = json.loads(raw[start:end + 1])
    if not isinstance(parsed, dict):
        raise ValueError("model output is not a JSON object")
    return parsed


def _clean(value) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _ask_json(provider: ChatProvider, system: str, prompt: str) -> Optional[Dict[str, Any]]:
    try:
        return _extract_json(provider.complete(system, prompt, temperature=0))
    except (LLMError, ValueError) as e:
        logger.warning("Mini-LLM extraction failed: %s", e)
        return None


def validate_name(provider: ChatProvider, text: str) -> Optional[str]:
    """The personal name contained in ``text``, or None."""
    parsed = _ask_json(
        provider,
        "Eres un validador de nombres para un bot de delivery. Responde solo JSON válido.",
        NAME_PROMPT.format(text=text),
    )
    if not parsed or not parsed.get("isValid"):
        return None
    return _clean(parsed.get("extractedName"))


def validate_address(provider: ChatProvider, text: str) -> Optional[str]:
    parsed = _ask_json(
        provider,
        "Eres un validador de direcciones para un bot de delivery. Responde solo JSON válido.",
        ADDRESS_PROMPT.format(text=text),
    )
    if not parsed or not parsed.get("isValid"):
        return None
    return _clean(parsed.get("address"))


def extract_address_and_name(provider: ChatProvider, text: str) -> Dict[str, Optional[str]]:
    parsed = _ask_json(
        provider,
        "Eres un extractor de datos para un bot de delivery. Responde solo JSON válido.",
        EXTRACT_PROMPT.format(text=text),
    ) or {}
    return {"address": _clean(parsed.get("address")), "name": _clean(parsed.get("name"))}


def classify_user_text(provider: ChatProvider, text: str) -> str:
    """One of "name", "address", "order" or "other"."""
    try:
        label = provider.complete(
            "Eres un clasificador de texto para un bot de delivery.",
            CLASSIFY_PROMPT.format(text=text),
            temperature=0,
        ).lower()
    except LLMError as e:
        logger.warning("Mini-LLM classification failed: %s", e)
        return "other"
    if "name" in label:
        return "name"
    if "address" in label or "dire" in label:
        return "address"
    if "order" in label or "pedido" in label:
        return "order"
    return "other"
