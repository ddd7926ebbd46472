"""Durable customer profiles keyed by phone number."""
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..utils.address import parse_address
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .database import SessionLocal
from .models import Customer

logger = get_logger("customers")


class CustomerProfile(BaseModel):
    phone_number: str
    name: Optional[str] = None
    email: Optional[str] = None
    address_text: Optional[str] = None
    address_location: Optional[Dict[str, float]] = None


class CustomerStore:
    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def get_customer(self, phone_number: str) -> Optional[CustomerProfile]:
        db = self.session_factory()
        try:
            row = db.query(Customer).filter(Customer.phone_number == phone_number).first()
            if row is None:
                return None
            meta = parse_address(row.address)
            return CustomerProfile(
                phone_number=row.phone_number,
                name=row.name,
                email=row.email,
                address_text=meta["text"],
                address_location=meta["location"],
            )
        finally:
            db.close()

    def upsert_customer(self, phone_number: str, name: Optional[str] = None,
                        address: Optional[str] = None, email: Optional[str] = None) -> Dict[str, Any]:
        """Create or update a profile; ``None`` fields keep their stored value."""
        db = self.session_factory()
        try:
            row = db.query(Customer).filter(Customer.phone_number == phone_number).first()
            created = row is None
            if created:
                row = Customer(phone_number=phone_number)
                db.add(row)
            if name:
                row.name = name
            if address:
                row.address = address
            if email:
                row.email = email
            db.commit()
            logger.info("Customer %s %s", mask_pii(phone_number), "created" if created else "updated")
            return {"phone_number": phone_number, "created": created}
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
