"""
ORM tables.

Piece quantities are integers. Conversion constants, money and derived
pallet / m² snapshots are Numeric and come back as Decimal.

Status and type columns hold the string value of the matching enum in
models/ (e.g. models.order.OrderStatus).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, ForeignKey,
    Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, new_id, utcnow


def format_number(prefix: str, number: Optional[int]) -> Optional[str]:
    """Human-facing document number, e.g. ORD-0007."""
    if number is None:
        return None
    return f"{prefix}-{number:04d}"


# ===================
# CATALOG
# ===================

class Machine(Base):
    __tablename__ = "machines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    # PAVER | BLOCK | CURB | OTHER
    category: Mapped[str] = mapped_column(String(20), default="PAVER")
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    recipe: Mapped[Optional["Recipe"]] = relationship(back_populates="product", uselist=False)


class Ingredient(Base):
    __tablename__ = "ingredients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="kg")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=Decimal("0"))


class Recipe(Base):
    __tablename__ = "recipes"
    __table_args__ = (
        CheckConstraint("pieces_per_cycle > 0", name="pieces_per_cycle_positive"),
        CheckConstraint("cycles_per_batch > 0", name="cycles_per_batch_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), unique=True, nullable=False
    )

    # ── Conversion constants ─────────────────────────────────
    pieces_per_cycle: Mapped[int] = mapped_column(Integer, nullable=False)
    cycles_per_batch: Mapped[int] = mapped_column(Integer, default=1)
    pieces_per_m2: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    pieces_per_pallet: Mapped[Optional[int]] = mapped_column(Integer)
    m2_per_pallet: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 4))
    avg_piece_weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3))
    density: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 3))

    # ── Packaging costs per batch ────────────────────────────
    pallet_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    strapping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    plastic_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    product: Mapped[Product] = relationship(back_populates="recipe")
    items: Mapped[list["RecipeItem"]] = relationship(
        back_populates="recipe", cascade="all, delete-orphan"
    )


class RecipeItem(Base):
    __tablename__ = "recipe_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    recipe_id: Mapped[str] = mapped_column(String(36), ForeignKey("recipes.id"), nullable=False)
    ingredient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("ingredients.id"), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)

    recipe: Mapped[Recipe] = relationship(back_populates="items")
    ingredient: Mapped[Ingredient] = relationship()


# ===================
# PRODUCTION
# ===================

class ProductionDay(Base):
    __tablename__ = "production_days"
    __table_args__ = (UniqueConstraint("machine_id", "production_date"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    machine_id: Mapped[str] = mapped_column(String(36), ForeignKey("machines.id"), nullable=False)
    production_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    machine: Mapped[Machine] = relationship()
    items: Mapped[list["ProductionItem"]] = relationship(
        back_populates="production_day", cascade="all, delete-orphan"
    )


class ProductionItem(Base):
    __tablename__ = "production_items"
    __table_args__ = (
        UniqueConstraint("production_day_id", "product_id"),
        CheckConstraint("cycles >= 0", name="cycles_not_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    production_day_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("production_days.id"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False, index=True
    )
    cycles: Mapped[int] = mapped_column(Integer, nullable=False)
    # cycles × pieces_per_cycle at save time; NULL when no recipe existed
    pieces: Mapped[Optional[int]] = mapped_column(Integer)
    start_time: Mapped[Optional[str]] = mapped_column(String(5))
    end_time: Mapped[Optional[str]] = mapped_column(String(5))

    production_day: Mapped[ProductionDay] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()


# ===================
# PALLETIZATION
# ===================

class Palletization(Base):
    __tablename__ = "palletizations"
    __table_args__ = (
        UniqueConstraint("product_id", "production_date"),
        UniqueConstraint("product_id", "sequence"),
        CheckConstraint("complete_pallets >= 0", name="complete_pallets_not_negative"),
        CheckConstraint("loose_pieces_after >= 0", name="loose_after_not_negative"),
        CheckConstraint("loss_pieces >= 0", name="loss_not_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False, index=True
    )
    production_date: Mapped[date] = mapped_column(Date, nullable=False)
    palletized_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Per-product event counter; the highest one is the head of the loose-piece chain
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    theoretical_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    loose_pieces_before: Mapped[int] = mapped_column(Integer, nullable=False)
    complete_pallets: Mapped[int] = mapped_column(Integer, nullable=False)
    loose_pieces_after: Mapped[int] = mapped_column(Integer, nullable=False)
    pieces_per_pallet: Mapped[int] = mapped_column(Integer, nullable=False)
    real_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    loss_pieces: Mapped[int] = mapped_column(Integer, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    product: Mapped[Product] = relationship()


class LoosePiecesBalance(Base):
    __tablename__ = "loose_pieces_balances"
    __table_args__ = (CheckConstraint("pieces >= 0", name="pieces_not_negative"),)

    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), primary_key=True
    )
    pieces: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    product: Mapped[Product] = relationship()


# ===================
# STOCK LEDGER
# ===================

class InventoryMovement(Base):
    __tablename__ = "inventory_movements"
    __table_args__ = (
        CheckConstraint("quantity_pieces >= 0", name="quantity_not_negative"),
        CheckConstraint("type IN ('IN', 'OUT')", name="type_valid"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False, index=True
    )
    movement_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    # IN | OUT
    type: Mapped[str] = mapped_column(String(3), nullable=False)
    # PALLETIZATION | LOOSE_PALLET | LEGACY_PRODUCTION | DELIVERY | DELIVERY_REVERSAL | MANUAL
    source: Mapped[str] = mapped_column(String(30), nullable=False)
    quantity_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_pallets: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))
    area_m2: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4))

    # ── Back-references ──────────────────────────────────────
    palletization_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("palletizations.id"), index=True
    )
    production_day_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("production_days.id"), index=True
    )
    delivery_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("deliveries.id"), index=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    product: Mapped[Product] = relationship()

    @property
    def signed_pieces(self) -> int:
        return self.quantity_pieces if self.type == "IN" else -self.quantity_pieces


# ===================
# ORDERS
# ===================

class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    # CONFIRMED | IN_PRODUCTION | READY | DELIVERED | CANCELLED
    status: Mapped[str] = mapped_column(String(20), default="CONFIRMED", index=True)
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    delivery_address: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.position"
    )

    @property
    def code(self) -> Optional[str]:
        return format_number("ORD", self.number)


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="quantity_positive"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # PIECES | M2
    unit: Mapped[str] = mapped_column(String(10), default="PIECES")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    subtotal: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    order: Mapped[Order] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()


class ProductionOrder(Base):
    __tablename__ = "production_orders"
    __table_args__ = (
        CheckConstraint("to_produce_pieces >= 0", name="to_produce_not_negative"),
        CheckConstraint("stock_at_creation >= 0", name="stock_not_negative"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, index=True
    )
    order_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("order_items.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id"), nullable=False, index=True
    )
    quantity_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_at_creation: Mapped[int] = mapped_column(Integer, nullable=False)
    to_produce_pieces: Mapped[int] = mapped_column(Integer, nullable=False)
    # PENDING | IN_PROGRESS | COMPLETED | CANCELLED
    status: Mapped[str] = mapped_column(String(20), default="PENDING", index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    order: Mapped[Order] = relationship()
    order_item: Mapped[OrderItem] = relationship()
    product: Mapped[Product] = relationship()

    @property
    def code(self) -> Optional[str]:
        return format_number("PO", self.number)


# ===================
# DELIVERIES
# ===================

class Delivery(Base):
    __tablename__ = "deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id"), nullable=False, index=True
    )
    # LOADING | IN_TRANSIT | DELIVERED | CANCELLED
    status: Mapped[str] = mapped_column(String(20), default="LOADING", index=True)
    loading_date: Mapped[date] = mapped_column(Date, nullable=False)
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    delivery_address: Mapped[Optional[str]] = mapped_column(Text)
    vehicle: Mapped[Optional[str]] = mapped_column(String(100))
    driver: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    order: Mapped[Order] = relationship()
    items: Mapped[list["DeliveryItem"]] = relationship(
        back_populates="delivery", cascade="all, delete-orphan"
    )

    @property
    def code(self) -> Optional[str]:
        return format_number("DEL", self.number)


class DeliveryItem(Base):
    __tablename__ = "delivery_items"
    __table_args__ = (CheckConstraint("quantity_pieces > 0", name="quantity_positive"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    delivery_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("deliveries.id"), nullable=False, index=True
    )
    order_item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("order_items.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("products.id"), nullable=False)
    quantity_pieces: Mapped[int] = mapped_column(Integer, nullable=False)

    delivery: Mapped[Delivery] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()
