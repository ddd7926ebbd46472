#!/usr/bin/env python3
"""
Configuration management for the pizzeria WhatsApp bot.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_DEFAULT_DB_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "pizzeria.db")


class Config:
    """Configuration class for the application."""

    # WhatsApp Cloud API
    WHATSAPP_VERIFY_TOKEN = os.getenv("WHATSAPP_VERIFY_TOKEN", "")
    WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
    WHATSAPP_PHONE_ID = os.getenv("WHATSAPP_PHONE_ID", "")
    WHATSAPP_API_VERSION = os.getenv("WHATSAPP_API_VERSION", "v20.0")
    # Meta app secret; when set, POST /webhook requires a valid x-hub-signature-256
    WHATSAPP_APP_SECRET = os.getenv("WHATSAPP_APP_SECRET", "")

    # Provider switch (openai|gemini); "openai" means any OpenAI-compatible endpoint
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai").lower()
    LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("DEEPSEEK_API_KEY")
    LLM_MODEL = os.getenv("LLM_MODEL", "deepseek-chat")
    LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.deepseek.com")
    LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", 30))

    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{_DEFAULT_DB_PATH}")

    # Session storage (redis|memory)
    SESSION_BACKEND = os.getenv("SESSION_BACKEND", "redis").lower()
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
    REDIS_DB = int(os.getenv("REDIS_DB", 0))

    # Restaurant / delivery
    RESTAURANT_LATITUDE = os.getenv("RESTAURANT_LATITUDE", "-12.0464")
    RESTAURANT_LONGITUDE = os.getenv("RESTAURANT_LONGITUDE", "-77.0428")
    DELIVERY_RATE_PER_KM = os.getenv("DELIVERY_RATE_PER_KM", "1.5")
    RESTAURANT_CODE = os.getenv("RESTAURANT_CODE", "sm")

    # Application behaviour
    SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", 6))
    MENU_CACHE_TTL_SECONDS = int(os.getenv("MENU_CACHE_TTL_SECONDS", 60))
    DEDUP_TTL_SECONDS = int(os.getenv("DEDUP_TTL_SECONDS", 86400))
    DEDUP_MAX_ENTRIES = int(os.getenv("DEDUP_MAX_ENTRIES", 10000))
    MAX_TOOL_ROUNDS = int(os.getenv("MAX_TOOL_ROUNDS", 6))
    MAX_HISTORY_MESSAGES = int(os.getenv("MAX_HISTORY_MESSAGES", 20))
    DEV_PASSPHRASE = os.getenv("DEV_PASSPHRASE", "admin123")

    @classmethod
    def restaurant_location(cls):
        return {"lat": float(cls.RESTAURANT_LATITUDE), "lng": float(cls.RESTAURANT_LONGITUDE)}

    @classmethod
    def delivery_rate(cls) -> float:
        return float(cls.DELIVERY_RATE_PER_KM)

    @classmethod
    def validate(cls):
        """Validate that configured values are usable."""
        invalid = []
        for key in ("RESTAURANT_LATITUDE", "RESTAURANT_LONGITUDE", "DELIVERY_RATE_PER_KM"):
            try:
                float(getattr(cls, key))
            except (TypeError, ValueError):
                invalid.append(key)

        if cls.LLM_PROVIDER not in ("openai", "gemini"):
            invalid.append("LLM_PROVIDER")
        if cls.SESSION_BACKEND not in ("redis", "memory"):
            invalid.append("SESSION_BACKEND")

        if invalid:
            raise ValueError(f"Invalid configuration: {', '.join(invalid)}")

        return True

# Validate configuration on import
Config.validate()
