"""Menu catalog: a TTL read-through cache over the products table plus search helpers.

Freshness policy: within the TTL the cached menu is served as-is. Once the
TTL lapses, a cheap ``max(updated_at)`` probe runs first and the full menu is
reloaded only when that watermark moved (or a reload is forced).
"""
import re
import threading
import time
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import func

from ..app.config import Config
from ..utils.fuzzy import best_fuzzy_match, normalize, tokenize
from ..utils.logger import get_logger
from .database import SessionLocal
from .models import Product

logger = get_logger("menu")

CATEGORY_LABELS = {
    "pizza": "🍕 Pizzas",
    "lasagna": "🍝 Lasagnas",
    "drink": "🥤 Bebidas",
    "extra": "⭐ Extras",
}

CATEGORY_HINTS = {
    "pizza": ["pizza", "pizzas"],
    "lasagna": ["lasagna", "lasagnas", "lasana", "lasanas"],
    "drink": ["bebida", "bebidas", "gaseosa", "refresco", "coca", "inca", "agua", "chicha", "limonada"],
    "extra": ["extra", "extras", "adicional", "pan", "postre", "alitas"],
}

SIZED_CATEGORIES = ("pizza", "drink")

STOPWORDS = {
    "pizza", "pizzas", "una", "un", "uno", "unos", "unas", "quiero", "quisiera", "dame", "deme",
    "me", "das", "por", "favor", "porfa", "con", "de", "del", "la", "el", "los", "las", "y", "o",
    "hola", "menu", "carta", "carrito", "pedido", "agrega", "agregar", "anade", "pon", "ponme",
    "tambien", "mas", "otra", "otro", "para", "mi", "al", "a", "en", "que", "tienen", "hay",
}

SIZE_SYNONYMS = {
    "grande": "Grande",
    "familiar": "Familiar",
    "personal": "Personal",
    "porcion": "Porción",
    "500ml": "500ml",
    "medio litro": "500ml",
    "1 5lt": "1.5Lt",
    "1 5l": "1.5Lt",
    "1 5 litros": "1.5Lt",
    "litro y medio": "1.5Lt",
}

FUZZY_MIN_SCORE = 2
FUZZY_MIN_RATIO = 0.6


class MenuItem(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str
    prices: Dict[str, float] = Field(default_factory=dict)
    keywords: List[str] = Field(default_factory=list)

    @property
    def search_text(self) -> str:
        return " ".join([self.name, self.description or "", " ".join(self.keywords)])


def normalize_prices(raw: Any) -> Dict[str, float]:
    """Accept ``{size: price}`` or ``[{size|label: .., price: ..}]``; drop non-numeric prices."""
    pairs = []
    if isinstance(raw, dict):
        pairs = list(raw.items())
    elif isinstance(raw, list):
        for entry in raw:
            if isinstance(entry, dict):
                pairs.append((entry.get("size") or entry.get("label"), entry.get("price")))
    prices = {}
    for size, price in pairs:
        if not size:
            continue
        try:
            prices[str(size)] = float(price)
        except (TypeError, ValueError):
            continue
    return prices


def requires_size(item: MenuItem) -> bool:
    return item.category in SIZED_CATEGORIES and len(item.prices) > 1


def resolve_size(item: MenuItem, size: Optional[str]) -> Optional[str]:
    """Return the item's own size label matching ``size`` case-insensitively."""
    if not size:
        return None
    wanted = normalize(size)
    for label in item.prices:
        if normalize(label) == wanted:
            return label
    return None


def format_price_info(prices: Dict[str, float]) -> str:
    return ", ".join(f"{size}: S/{price:.2f}" for size, price in prices.items())


def meaningful_tokens(text: str) -> List[str]:
    return [t for t in tokenize(text) if t not in STOPWORDS]


def detect_size_from_text(text: str, available: Optional[Iterable[str]] = None) -> Optional[str]:
    norm = normalize(text)
    if not norm:
        return None
    padded = f" {norm} "
    found = None
    for synonym, label in SIZE_SYNONYMS.items():
        if f" {synonym} " in padded:
            found = label
            break
    if found is None or available is None:
        return found
    for label in available:
        if normalize(label) == normalize(found):
            return label
    return None


def detect_category_from_text(text: str) -> Optional[str]:
    tokens = set(tokenize(text))
    for category, hints in CATEGORY_HINTS.items():
        if tokens.intersection(hints):
            return category
    return None


class MenuStore:
    def __init__(self, session_factory=None, ttl_seconds: Optional[int] = None, clock=time.monotonic):
        self.session_factory = session_factory or SessionLocal
        self.ttl_seconds = Config.MENU_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self.stats = {"probe_reads": 0, "full_reads": 0}
        self._items: List[MenuItem] = []
        self._watermark = None
        self._loaded_at: Optional[float] = None
        self._primed = False
        self._lock = threading.Lock()

    # ---- cache ----

    def prime(self, items: List[Dict[str, Any]]):
        """Seed the cache directly, bypassing the database."""
        with self._lock:
            self._items = [self._to_item(i) for i in items]
            self._loaded_at = self.clock()
            self._watermark = None
            self._primed = True

    def get_menu(self, force_reload: bool = False) -> List[MenuItem]:
        with self._lock:
            now = self.clock()
            if self._primed and not force_reload:
                return list(self._items)
            if not force_reload and self._loaded_at is not None and now - self._loaded_at < self.ttl_seconds:
                return list(self._items)

            db = self.session_factory()
            try:
                latest = None
                if not force_reload and self._loaded_at is not None:
                    latest = db.query(func.max(Product.updated_at)).filter(Product.is_active.is_(True)).scalar()
                    self.stats["probe_reads"] += 1
                    if latest == self._watermark:
                        self._loaded_at = now
                        return list(self._items)

                rows = (
                    db.query(Product)
                    .filter(Product.is_active.is_(True))
                    .order_by(Product.category, Product.name)
                    .all()
                )
                self.stats["full_reads"] += 1
                self._items = [self._to_item(r) for r in rows]
                self._watermark = max((r.updated_at for r in rows if r.updated_at), default=None)
                self._loaded_at = now
                self._primed = False
                logger.info("Menu reloaded: %d active items", len(self._items))
            finally:
                db.close()
            return list(self._items)

    @staticmethod
    def _to_item(row) -> MenuItem:
        if isinstance(row, dict):
            data = dict(row)
        else:
            data = {
                "id": row.id,
                "name": row.name,
                "description": row.description or "",
                "category": row.category,
                "prices": row.prices,
                "keywords": row.keywords or [],
            }
        data["prices"] = normalize_prices(data.get("prices"))
        data["keywords"] = [str(k) for k in (data.get("keywords") or [])]
        data["description"] = data.get("description") or ""
        return MenuItem(**data)

    # ---- lookups ----

    def get_item(self, item_id: str) -> Optional[MenuItem]:
        if not item_id:
            return None
        wanted = item_id.strip().lower()
        for item in self.get_menu():
            if item.id.lower() == wanted:
                return item
        return None

    def get_items_by_category(self, category: str) -> List[MenuItem]:
        return [i for i in self.get_menu() if i.category == category]

    def get_categories(self) -> List[Dict[str, str]]:
        present = {i.category for i in self.get_menu()}
        return [
            {"id": cat, "title": label}
            for cat, label in CATEGORY_LABELS.items()
            if cat in present
        ]

    # ---- search ----

    def search_menu(self, query: Optional[str] = None, category: Optional[str] = None,
                    exclude: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        items = self.get_menu()
        if category:
            items = [i for i in items if i.category == category]
        excluded = [normalize(e) for e in (exclude or []) if normalize(e)]
        if excluded:
            items = [i for i in items if not any(e in normalize(i.search_text) for e in excluded)]

        norm_query = normalize(query or "")
        if norm_query:
            matches = [i for i in items if norm_query in normalize(i.search_text)]
            if not matches:
                match = best_fuzzy_match(
                    " ".join(meaningful_tokens(query)), items, key=lambda i: i.search_text
                )
                if match and (match.score >= FUZZY_MIN_SCORE or match.ratio >= FUZZY_MIN_RATIO):
                    matches = [match.item]
            items = matches
        return [self.to_result(i) for i in items]

    @staticmethod
    def to_result(item: MenuItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "name": item.name,
            "description": item.description,
            "category": item.category,
            "prices": item.prices,
            "price_info": format_price_info(item.prices),
        }

    def find_product_match(self, text: str) -> Optional[Dict[str, Any]]:
        """Best fuzzy product for free text, with a size hint when one is mentioned."""
        query = " ".join(meaningful_tokens(text))
        if not query:
            return None
        match = best_fuzzy_match(
            query, self.get_menu(),
            key=lambda i: f"{i.name} {i.description} {i.id.replace('_', ' ')}",
        )
        if match is None or (match.score < FUZZY_MIN_SCORE and match.ratio < FUZZY_MIN_RATIO):
            return None
        return {
            "item": match.item,
            "size": detect_size_from_text(text, match.item.prices.keys()),
            "score": match.score,
            "ratio": match.ratio,
        }

    @staticmethod
    def match_cart_item(cart, reference: str, size_hint: Optional[str] = None):
        """Resolve a loose reference ("la de pepperoni") to a cart line."""
        lines = list(cart)
        if size_hint:
            sized = [c for c in lines if c.size and normalize(c.size) == normalize(size_hint)]
            lines = sized or lines
        query = " ".join(meaningful_tokens(reference)) or reference
        match = best_fuzzy_match(query, lines, key=lambda c: f"{c.name} {c.product_id.replace('_', ' ')}")
        if match is None or (match.score < FUZZY_MIN_SCORE and match.ratio < FUZZY_MIN_RATIO):
            return None
        return match.item


_menu_store = None
_menu_lock = threading.Lock()


def get_menu_store() -> MenuStore:
    global _menu_store
    with _menu_lock:
        if _menu_store is None:
            _menu_store = MenuStore()
        return _menu_store
