"""Name and address classifiers for free text.

Each strategy looks at the message and either returns a candidate or None
(pass). Strategies run in list order and the first candidate wins, so the
precedence can be tested one strategy at a time.
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from .rules import (
    NAME_INTRO,
    extract_address_from_sentence,
    extract_order_tail_address,
    has_address_cue,
    is_command_text,
    looks_like_address,
    looks_like_order,
)

T = TypeVar("T")

MAX_NAME_WORDS = 5


@dataclass
class NameContext:
    text: str
    has_pending_address: bool = False
    waiting_for_name: bool = False


@dataclass
class NameCandidate:
    name: str
    remainder: str
    source: str


def explicit_intro(ctx: NameContext) -> Optional[NameCandidate]:
    m = NAME_INTRO.search(ctx.text)
    if not m or not m.group(1).strip():
        return None
    return NameCandidate(name=m.group(1).strip(), remainder=ctx.text, source="intro")


def first_line_with_pending_address(ctx: NameContext) -> Optional[NameCandidate]:
    lines = [line.strip() for line in ctx.text.splitlines() if line.strip()]
    if not ctx.has_pending_address or len(lines) < 2:
        return None
    return NameCandidate(name=lines[0], remainder="\n".join(lines[1:]), source="first_line")


def whole_text_with_pending_address(ctx: NameContext) -> Optional[NameCandidate]:
    if not ctx.has_pending_address:
        return None
    return NameCandidate(name=ctx.text.strip(), remainder=ctx.text, source="pending_address")


def whole_text_when_asked(ctx: NameContext) -> Optional[NameCandidate]:
    if not ctx.waiting_for_name:
        return None
    return NameCandidate(name=ctx.text.strip(), remainder=ctx.text, source="asked")


NAME_STRATEGIES: List[Callable[[NameContext], Optional[NameCandidate]]] = [
    explicit_intro,
    first_line_with_pending_address,
    whole_text_with_pending_address,
    whole_text_when_asked,
]


def sentence_address(text: str) -> Optional[str]:
    return extract_address_from_sentence(text)


def order_tail_address(text: str) -> Optional[str]:
    return extract_order_tail_address(text)


def cue_and_shape_address(text: str) -> Optional[str]:
    if has_address_cue(text) and looks_like_address(text):
        return text.strip()
    return None


ADDRESS_STRATEGIES: List[Callable[[str], Optional[str]]] = [
    sentence_address,
    order_tail_address,
    cue_and_shape_address,
]


def first_match(strategies: List[Callable[..., Optional[T]]], value) -> Optional[T]:
    for strategy in strategies:
        result = strategy(value)
        if result:
            return result
    return None


def find_name_candidate(ctx: NameContext) -> Optional[NameCandidate]:
    if not ctx.text or not ctx.text.strip():
        return None
    return first_match(NAME_STRATEGIES, ctx)


def is_acceptable_name(candidate: str) -> bool:
    """No digits, commas or line breaks, at most five words, and not an address, order or command."""
    if not candidate or len(candidate.strip()) < 2:
        return False
    if re.search(r"\d", candidate) or "," in candidate or "\n" in candidate:
        return False
    if len(candidate.split()) > MAX_NAME_WORDS:
        return False
    return not (looks_like_address(candidate) or looks_like_order(candidate) or is_command_text(candidate))


def find_address_continuation(text: str) -> Optional[str]:
    """Address text for a pending change still missing it, or None to hand the message to the model."""
    if not text or not text.strip():
        return None
    return first_match(ADDRESS_STRATEGIES, text)


def clean_name(name: str) -> str:
    return " ".join(w.capitalize() if w.islower() else w for w in name.split())
