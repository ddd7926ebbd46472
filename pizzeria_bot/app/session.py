#!/usr/bin/env python3
"""
Session management module for the pizzeria bot.

This module stores the per-customer conversation session in Redis, falling
back to in-memory storage when Redis is unavailable. Sessions expire after
``SESSION_TTL_HOURS`` of inactivity and are rebuilt from the customer's
durable profile when one exists.
"""

import json
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, Optional

import redis
from pydantic import ValidationError

from ..schemas.session_models import CartItem, LatLng, PendingAddressChange, Session
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .config import Config
from .delivery import apply_delivery_from_coords, parse_coords_from_text, quote_delivery, strip_coords

logger = get_logger("session")


def _connect_redis():
    client = redis.Redis(
        host=Config.REDIS_HOST,
        port=Config.REDIS_PORT,
        db=Config.REDIS_DB,
        decode_responses=True,
    )
    client.ping()
    return client


class SessionManager:
    """Manages customer sessions: cart, delivery state and conversation history."""

    def __init__(self, customer_store=None, backend: Optional[str] = None,
                 ttl_hours: Optional[int] = None, redis_client=None, clock=time.time):
        """
        Args:
            customer_store: profile lookup used to pre-fill fresh sessions
            backend: "redis" or "memory"; defaults to Config.SESSION_BACKEND
            ttl_hours: inactivity window before a session is replaced
            redis_client: an already connected client (skips connecting)
            clock: time source, seconds since epoch
        """
        self.customer_store = customer_store
        self.ttl_seconds = (Config.SESSION_TTL_HOURS if ttl_hours is None else ttl_hours) * 3600
        self.clock = clock
        self.memory_sessions: Dict[str, str] = {}
        self.redis_client = redis_client
        self.use_redis = redis_client is not None

        if not self.use_redis and (backend or Config.SESSION_BACKEND) == "redis":
            try:
                self.redis_client = _connect_redis()
                self.use_redis = True
                logger.info("Using Redis for session storage")
            except redis.RedisError as e:
                logger.warning("Redis not available (%s), using in-memory session storage", e)

    def _get_session_key(self, phone: str) -> str:
        return f"session:{phone}"

    # ---- raw storage ----

    def _load(self, phone: str) -> Optional[Session]:
        if self.use_redis:
            raw = self.redis_client.get(self._get_session_key(phone))
        else:
            raw = self.memory_sessions.get(phone)
        if not raw:
            return None
        try:
            return Session.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("Discarding unreadable session for %s: %s", mask_pii(phone), e)
            return None

    def _save(self, session: Session):
        raw = session.model_dump_json()
        if self.use_redis:
            # Redis keeps a copy a bit longer than the logical TTL; expiry is decided on read
            self.redis_client.set(self._get_session_key(session.phone), raw, ex=self.ttl_seconds * 2)
        else:
            self.memory_sessions[session.phone] = raw

    # ---- lifecycle ----

    def _build_fresh(self, phone: str) -> Session:
        session = Session(phone=phone, updated_at=self.clock())
        profile = self.customer_store.get_customer(phone) if self.customer_store else None
        if profile is not None:
            session.name = profile.name
            session.address = profile.address_text
            if profile.address_location:
                apply_delivery_from_coords(session, LatLng(**profile.address_location))
            logger.info("Session for %s pre-filled from profile", mask_pii(phone))
        return session

    def is_expired(self, session: Session) -> bool:
        return self.clock() - session.updated_at > self.ttl_seconds

    def get_session(self, phone: str) -> Session:
        """Load the session, replacing missing or expired ones with a fresh (pre-filled) session."""
        session = self._load(phone)
        if session is not None and not self.is_expired(session):
            return session
        if session is not None:
            logger.info("Session for %s expired, starting fresh", mask_pii(phone))
        session = self._build_fresh(phone)
        self._save(session)
        return session

    def update_session(self, phone: str, session: Session) -> Session:
        session.phone = phone
        session.updated_at = self.clock()
        self._save(session)
        return session

    def reset_session(self, phone: str) -> Session:
        session = Session(phone=phone, updated_at=self.clock())
        self._save(session)
        return session

    def _with_session(self, phone: str, session: Optional[Session], mutate) -> Session:
        """Apply ``mutate`` in memory when a session is given, else load-mutate-persist."""
        if session is not None:
            mutate(session)
            return session
        session = self.get_session(phone)
        mutate(session)
        return self.update_session(phone, session)

    # ---- cart ----

    def add_to_cart(self, phone: str, item: Dict[str, Any], quantity: int = 1,
                    session: Optional[Session] = None) -> Session:
        """Add ``quantity`` of ``item`` (product_id, name, unit_price[, size, menu_item_id])."""
        if quantity < 1:
            raise ValueError("quantity must be at least 1")

        def mutate(s: Session):
            for line in s.cart:
                if line.product_id == item["product_id"]:
                    line.quantity += quantity
                    return
            s.cart.append(CartItem(
                product_id=item["product_id"],
                name=item["name"],
                unit_price=float(item["unit_price"]),
                quantity=quantity,
                size=item.get("size"),
                menu_item_id=item.get("menu_item_id"),
            ))

        return self._with_session(phone, session, mutate)

    def remove_from_cart(self, phone: str, product_id: str, session: Optional[Session] = None) -> Session:
        wanted = product_id.lower()

        def mutate(s: Session):
            s.cart = [
                line for line in s.cart
                if line.product_id.lower() != wanted and (line.menu_item_id or "").lower() != wanted
            ]

        return self._with_session(phone, session, mutate)

    def clear_cart(self, phone: str, session: Optional[Session] = None) -> Session:
        def mutate(s: Session):
            s.cart = []

        return self._with_session(phone, session, mutate)

    # ---- delivery ----

    def set_delivery_details(self, phone: str, name: str, address: str,
                             session: Optional[Session] = None) -> Session:
        """Record the customer's name and a proposed delivery address.

        The confirmed address fields are left alone: the proposal lives in
        ``pending_address_change`` until both text and location are known.
        """
        def mutate(s: Session):
            if name:
                s.name = name.strip()
                s.waiting_for_name = False
            coords = parse_coords_from_text(address)
            if coords is not None:
                quote = quote_delivery(coords)
                s.delivery = quote
                remainder = strip_coords(address) or None
                s.pending_address_change = PendingAddressChange(
                    location=coords,
                    distance_km=quote.distance_km,
                    cost=quote.cost,
                    address_text=remainder,
                    suggested_text=remainder,
                    awaiting_choice=False,
                    requested_at=self.clock(),
                )
            else:
                text = address.strip()
                s.pending_address_change = PendingAddressChange(
                    address_text=text,
                    suggested_text=text,
                    awaiting_choice=True,
                    requested_at=self.clock(),
                )

        return self._with_session(phone, session, mutate)


class ProcessedMessageLog:
    """Remembers provider message ids so redelivered webhooks are processed once.

    Redis uses an atomic ``SET NX EX``; the in-memory fallback is a bounded,
    TTL'd map guarded by a lock.
    """

    def __init__(self, redis_client=None, ttl_seconds: Optional[int] = None,
                 max_entries: Optional[int] = None, clock=time.monotonic):
        self.redis_client = redis_client
        self.ttl_seconds = Config.DEDUP_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.max_entries = Config.DEDUP_MAX_ENTRIES if max_entries is None else max_entries
        self.clock = clock
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def mark_seen(self, message_id: Optional[str]) -> bool:
        """Record ``message_id``; returns False when it was already recorded."""
        if not message_id:
            return True
        if self.redis_client is not None:
            return bool(self.redis_client.set(f"wamid:{message_id}", 1, nx=True, ex=self.ttl_seconds))

        with self._lock:
            now = self.clock()
            while self._seen:
                oldest_id, seen_at = next(iter(self._seen.items()))
                if now - seen_at <= self.ttl_seconds:
                    break
                self._seen.pop(oldest_id)
            if message_id in self._seen:
                return False
            while len(self._seen) >= self.max_entries:
                self._seen.popitem(last=False)
            self._seen[message_id] = now
            return True
