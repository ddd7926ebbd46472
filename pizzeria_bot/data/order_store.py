"""Order persistence and recipe-based inventory bookkeeping.

``create_order`` is all-or-nothing: the order row, its weekly order code and
every stock deduction are committed together or rolled back together.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..app.config import Config
from ..schemas.order_models import LastOrderStatus, OrderInput, OrderReceipt, OrderStatus
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .database import SessionLocal
from .models import Ingredient, InventoryMovement, MovementType, Order, ProductIngredient

logger = get_logger("orders")

STALE_ORDER_HOURS = 12


def week_start(moment: datetime) -> datetime:
    """Monday 00:00 of the week containing ``moment``."""
    start = moment - timedelta(days=moment.weekday())
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def format_order_code(created_at: datetime, weekly_number: int, restaurant_code: str) -> str:
    return f"{created_at.strftime('%d%m%y')}{restaurant_code}{weekly_number:02d}"


class OrderStore:
    def __init__(self, session_factory=None, restaurant_code: Optional[str] = None, clock=datetime.now):
        self.session_factory = session_factory or SessionLocal
        self.restaurant_code = restaurant_code or Config.RESTAURANT_CODE
        self.clock = clock

    def create_order(self, order: OrderInput) -> OrderReceipt:
        """Persist the order, derive its code and deduct recipe stock in one transaction."""
        db = self.session_factory()
        try:
            created_at = self.clock()
            row = Order(
                phone_number=order.phone_number,
                source=order.source,
                items=[i.model_dump() for i in order.items],
                total=order.total,
                status=order.status,
                notes=order.notes,
                created_at=created_at,
            )
            db.add(row)
            db.flush()

            weekly_number = (
                db.query(Order)
                .filter(Order.created_at >= week_start(created_at), Order.created_at <= created_at)
                .count()
            )
            row.order_code = format_order_code(created_at, weekly_number, self.restaurant_code)

            self._apply_recipe_stock(db, row, sign=-1, movement_type=MovementType.sale)
            db.commit()
            logger.info("Order %s created for %s (total %.2f)",
                        row.order_code, mask_pii(order.phone_number), order.total)
            return OrderReceipt(order_id=row.id, order_code=row.order_code)
        except Exception:
            db.rollback()
            logger.exception("Order creation failed for %s", mask_pii(order.phone_number))
            raise
        finally:
            db.close()

    @staticmethod
    def _apply_recipe_stock(db, order: Order, sign: int, movement_type: MovementType):
        """Adjust ingredient stock for every recipe-linked product in the order."""
        usage: Dict[int, float] = {}
        for item in order.items or []:
            recipe = (
                db.query(ProductIngredient)
                .filter(ProductIngredient.product_id == item["product_id"])
                .all()
            )
            for line in recipe:
                usage[line.ingredient_id] = usage.get(line.ingredient_id, 0) + line.quantity * item["quantity"]

        for ingredient_id, amount in usage.items():
            ingredient = db.get(Ingredient, ingredient_id)
            if ingredient is None:
                continue
            ingredient.stock = (ingredient.stock or 0) + sign * amount
            db.add(InventoryMovement(
                ingredient_id=ingredient_id,
                order_id=order.id,
                type=movement_type,
                quantity=sign * amount,
                reason=f"{movement_type.value} {order.order_code or order.id}",
            ))

    def restore_stock_for_order(self, order_id: str):
        db = self.session_factory()
        try:
            order = db.get(Order, order_id)
            if order is None:
                return
            self._apply_recipe_stock(db, order, sign=1, movement_type=MovementType.cancel)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update_order_status(self, order_id: str, status: OrderStatus) -> bool:
        db = self.session_factory()
        try:
            order = db.get(Order, order_id)
            if order is None:
                return False
            previous = order.status
            order.status = status
            order.updated_at = self.clock()
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if status == OrderStatus.cancelled and previous != OrderStatus.cancelled:
            try:
                self.restore_stock_for_order(order_id)
            except SQLAlchemyError as e:
                logger.warning("Stock restore failed for order %s: %s", order_id, e)
        return True

    def get_last_order_status(self, phone_number: str) -> Optional[LastOrderStatus]:
        db = self.session_factory()
        try:
            order = (
                db.query(Order)
                .filter(Order.phone_number == phone_number)
                .order_by(Order.created_at.desc())
                .first()
            )
            if order is None:
                return None
            status = order.status.value if isinstance(order.status, OrderStatus) else str(order.status)
            return LastOrderStatus(order_id=order.id, order_code=order.order_code, status=status)
        finally:
            db.close()

    def expire_stale_orders(self, hours: int = STALE_ORDER_HOURS) -> int:
        """Mark confirmed orders older than ``hours`` as expired; returns how many changed."""
        cutoff = self.clock() - timedelta(hours=hours)
        db = self.session_factory()
        try:
            stale = (
                db.query(Order)
                .filter(Order.status == OrderStatus.confirmed, Order.created_at < cutoff)
                .all()
            )
            for order in stale:
                order.status = OrderStatus.expired
                order.updated_at = self.clock()
            db.commit()
            if stale:
                logger.info("Expired %d stale orders", len(stale))
            return len(stale)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
