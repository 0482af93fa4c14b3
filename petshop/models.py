"""
Database models for the pet shop
--------------------------------
Tech stack:
- FastAPI
- SQLAlchemy ORM
- MySQL (PyMySQL) in production, SQLite in tests

This file contains:
- User model
- Category, Product & Service models
- CartItem model
- Order, OrderItem & Payment models
- Appointment model
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def _values(enum_cls):
    # store the lowercase values ("pending"), not the member names
    return [member.value for member in enum_cls]


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentRecordStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Order statuses that accept no further change
TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Appointment statuses that hold a time slot
ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


# User

class User(Base):
    """
    Represents application users (customers and shop admins).
    Used for authentication & authorization.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=True)
    hashed_password = Column(String(255), nullable=False)

    role = Column(
        SQLEnum(UserRole, values_callable=_values, name="user_role"),
        default=UserRole.CUSTOMER,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    cart_items = relationship(
        "CartItem",
        back_populates="user",
        cascade="all, delete-orphan"
    )
    orders = relationship("Order", back_populates="user")

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def __str__(self):
        return self.email


# Category

class Category(Base):
    """
    Product categories (e.g. Dog Food, Cat Toys).
    Deleting a category only deactivates it.
    """

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    products = relationship("Product", back_populates="category")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    def __str__(self):
        return self.name


# Product

class Product(Base):
    """
    Represents a sellable product.
    stock_quantity is only ever decremented inside the checkout transaction.
    """

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Product price stored as Decimal for accuracy
    price = Column(Numeric(12, 2), nullable=False)

    # Available stock quantity
    stock_quantity = Column(Integer, nullable=False, default=0)

    category_id = Column(
        Integer,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True
    )
    category = relationship("Category", back_populates="products")

    image_url = Column(String(500), nullable=True)

    # Soft delete flag; order history keeps pointing at inactive products
    is_active = Column(Boolean, default=True, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    @property
    def category_name(self):
        return self.category.name if self.category else None

    def __str__(self):
        return self.name


# Service

class Service(Base):
    """
    A bookable shop service (grooming, vet check, boarding...).
    """

    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)

    # Duration in minutes
    duration = Column(Integer, nullable=True)

    image_url = Column(String(500), nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    def __str__(self):
        return self.name


# CartItem

class CartItem(Base):
    """
    One (user, product) line of a shopping cart.
    Repeated adds of the same product merge into the same row.
    """

    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
    )

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )

    # Quantity of product in cart, always >= 1
    quantity = Column(Integer, nullable=False, default=1)

    user = relationship("User", back_populates="cart_items")
    product = relationship("Product")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    # Live subtotal, priced at the product's current price
    @property
    def subtotal(self):
        return self.quantity * self.product.price

    def __str__(self):
        return f"{self.id} ({self.product.name})"


class Order(Base):
    """
    Represents a finalized order.
    Created together with its items in the checkout transaction.
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    order_number = Column(String(50), unique=True, nullable=False)

    # Pricing breakdown, fixed at checkout
    subtotal = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    shipping_fee = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(
        SQLEnum(OrderStatus, values_callable=_values, name="order_status"),
        default=OrderStatus.PENDING,
        nullable=False
    )
    payment_status = Column(
        SQLEnum(PaymentStatus, values_callable=_values, name="order_payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False
    )

    shipping_address = Column(Text, nullable=True)
    payment_method = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    user = relationship("User", back_populates="orders")

    # Items purchased in this order
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id"
    )
    payments = relationship("Payment", back_populates="order")

    @property
    def is_terminal(self):
        return self.status in TERMINAL_ORDER_STATUSES

    @property
    def customer_name(self):
        return self.user.full_name if self.user else None

    @property
    def customer_email(self):
        return self.user.email if self.user else None

    def __str__(self):
        return f"Order {self.order_number}"


class OrderItem(Base):
    """
    Individual product entry inside an order.
    Stores snapshot prices so later catalog changes don't rewrite history.
    """

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False
    )
    product_id = Column(
        Integer,
        ForeignKey("products.id"),
        nullable=False
    )

    quantity = Column(Integer, nullable=False)

    # Snapshot prices at time of order
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    product = relationship("Product")
    order = relationship("Order", back_populates="items")

    @property
    def product_name(self):
        return self.product.name if self.product else None

    @property
    def product_image(self):
        return self.product.image_url if self.product else None

    def __str__(self):
        return f"OrderItem {self.id}"


class Payment(Base):
    """
    A payment attempt against an order.
    Written by the quick-payment stub, which approves immediately.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )

    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    status = Column(
        SQLEnum(PaymentRecordStatus, values_callable=_values, name="payment_status"),
        default=PaymentRecordStatus.PENDING,
        nullable=False
    )
    reference_number = Column(String(50), unique=True, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="payments")

    @property
    def order_number(self):
        return self.order.order_number

    @property
    def order_total(self):
        return self.order.total_amount

    def __str__(self):
        return self.reference_number


class Appointment(Base):
    """
    A booked service slot for a customer's pet.
    """

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    service_id = Column(
        Integer,
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False
    )

    appointment_date = Column(Date, nullable=False)
    appointment_time = Column(Time, nullable=False)

    pet_name = Column(String(100), nullable=True)
    pet_type = Column(String(50), nullable=True)
    pet_breed = Column(String(100), nullable=True)
    special_requests = Column(Text, nullable=True)

    # Service price at booking time
    total_amount = Column(Numeric(12, 2), nullable=False)

    status = Column(
        SQLEnum(AppointmentStatus, values_callable=_values, name="appointment_status"),
        default=AppointmentStatus.SCHEDULED,
        nullable=False
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    user = relationship("User")
    service = relationship("Service")

    @property
    def service_name(self):
        return self.service.name

    @property
    def service_duration(self):
        return self.service.duration

    def __str__(self):
        return f"Appointment {self.id}"
