import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from ..schemas.order_models import OrderStatus


class MovementType(str, enum.Enum):
    sale = "sale"
    cancel = "cancel"
    restock = "restock"
    adjustment = "adjustment"

class Product(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    category = Column(String, index=True, nullable=False)
    prices = Column(JSON, nullable=False, default=dict)  # size label -> price
    keywords = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

    recipe = relationship("ProductIngredient", back_populates="product")

class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    phone_number = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(Text, nullable=True)  # JSON address meta, see utils/address.py
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())

class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_code = Column(String, index=True, nullable=True)
    phone_number = Column(String, index=True, nullable=False)
    source = Column(String, nullable=False, default="whatsapp")
    items = Column(JSON, nullable=False, default=list)
    total = Column(Float, nullable=False)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.pending)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=True)

class Ingredient(Base):
    __tablename__ = "ingredients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    unit = Column(String, nullable=False, default="unit")
    stock = Column(Float, nullable=False, default=0)
    min_stock = Column(Float, nullable=False, default=0)

class ProductIngredient(Base):
    __tablename__ = "product_ingredients"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False, index=True)
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False)
    quantity = Column(Float, nullable=False)  # per unit sold

    product = relationship("Product", back_populates="recipe")
    ingredient = relationship("Ingredient")

class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True, index=True)
    ingredient_id = Column(Integer, ForeignKey("ingredients.id"), nullable=False)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True)
    type = Column(Enum(MovementType), nullable=False)
    quantity = Column(Float, nullable=False)  # signed: negative for sales
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
