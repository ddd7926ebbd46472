"""Security helpers: PII masking for safe logging and webhook signature checks."""
import hashlib
import hmac
import re
from typing import Optional

_LONG_DIGITS = re.compile(r"\+?\b\d{8,}\b")

SIGNATURE_HEADER = "x-hub-signature-256"


def mask_pii(text: str) -> str:
    """Mask phone-like digit runs, keeping the last 4 digits for correlation."""
    if not text:
        return text
    return _LONG_DIGITS.sub(lambda m: "***" + m.group(0)[-4:], str(text))


def sign_payload(body: bytes, app_secret: str) -> str:
    digest = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, signature: Optional[str], app_secret: str) -> bool:
    """True when ``signature`` is the Meta ``sha256=<hmac>`` of the raw body."""
    if not signature:
        return False
    return hmac.compare_digest(signature, sign_payload(body, app_secret))
