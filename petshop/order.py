import logging
import random
import time
from collections import OrderedDict
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from .config import Settings
from .dependencies import get_admin_user, get_current_user, get_db, get_settings
from .errors import (
    EmptyCart,
    InsufficientStock,
    InternalError,
    InvalidTransition,
    NotFound,
    ShopError,
    Unavailable,
)
from .models import (
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    User,
)
from .schemas import Envelope, Pagination, paginate

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/orders",
    tags=["orders"],
)

CENT = Decimal("0.01")

# Aliases the storefront sends for the same method
PAYMENT_METHOD_ALIASES = {
    "bank-transfer": "transfer_bank",
    "bank_transfer": "transfer_bank",
}

TOP_PRODUCTS_LIMIT = 10


# =====================================================
# Pydantic Schemas
# =====================================================

class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: Optional[str] = None
    product_image: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: int
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    subtotal: Decimal
    tax_amount: Decimal
    shipping_fee: Decimal
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_address: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemOut] = []

    class Config:
        from_attributes = True


class OrderList(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination


class CheckoutDetails(BaseModel):
    payment_method: str = Field(..., min_length=1, max_length=50)
    shipping_address: str = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("payment_method")
    @classmethod
    def normalize_payment_method(cls, v):
        v = v.strip()
        return PAYMENT_METHOD_ALIASES.get(v, v)


class OrderLine(BaseModel):
    product_id: int = Field(..., ge=1)
    quantity: int = Field(..., gt=0)


class OrderCreate(CheckoutDetails):
    items: List[OrderLine] = Field(..., min_length=1)
    shipping_address: str = Field(..., min_length=10, max_length=500)


class StatusUpdate(BaseModel):
    status: OrderStatus


class PaymentStatusUpdate(BaseModel):
    payment_status: PaymentStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CustomerInfo(BaseModel):
    full_name: str
    email: str
    phone: Optional[str] = None

    class Config:
        from_attributes = True


class InvoiceDetails(BaseModel):
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


class Invoice(BaseModel):
    order: OrderOut
    customer: CustomerInfo
    invoice_details: InvoiceDetails


class StatusSummary(BaseModel):
    status: OrderStatus
    count: int
    total_amount: Decimal


class TopProduct(BaseModel):
    product_id: int
    name: str
    total_sold: int
    total_revenue: Decimal


class RevenueSummary(BaseModel):
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    paid_revenue: Decimal


class OrderStats(BaseModel):
    period: str
    status_summary: List[StatusSummary]
    top_products: List[TopProduct]
    revenue_summary: RevenueSummary


# =====================================================
# Service Logic
# =====================================================

def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


def make_reference(prefix: str) -> str:
    """`PREFIX-` + last 6 digits of the millisecond clock + 3 random digits."""
    stamp = str(int(time.time() * 1000))[-6:]
    return f"{prefix}-{stamp}{random.randint(0, 999):03d}"


def generate_order_number(db: Session) -> str:
    # The unique constraint on order_number still guards concurrent inserts
    while True:
        candidate = make_reference("ORD")
        taken = db.query(Order.id).filter(Order.order_number == candidate).first()
        if not taken:
            return candidate


def price_order(subtotal: Decimal, settings: Settings):
    """Return (tax, shipping, total) for a subtotal."""
    tax = (subtotal * settings.tax_rate).quantize(CENT, rounding=ROUND_HALF_UP)
    shipping = settings.shipping_fee.quantize(CENT)
    return tax, shipping, subtotal + tax + shipping


def place_order(
    db: Session,
    user: User,
    quantities: Dict[int, int],
    details: CheckoutDetails,
    settings: Settings,
) -> Order:
    """
    Create an order for `quantities` ({product_id: quantity}) in one transaction.

    Product rows are locked, re-validated, priced, decremented with a
    stock guard, and the purchased products are removed from the user's cart.
    Any failure rolls the whole thing back.
    """
    user_id = user.id

    try:
        # 1️⃣ Lock product rows in ascending id order
        products = {
            product.id: product
            for product in (
                db.query(Product)
                .filter(Product.id.in_(list(quantities)))
                .order_by(Product.id)
                .with_for_update()
                .populate_existing()
                .all()
            )
        }

        # 2️⃣ Re-validate every line against the locked rows
        subtotal = Decimal("0")
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None:
                raise NotFound(f"Product with ID {product_id} not found")
            if not product.is_active:
                raise Unavailable(f"{product.name} is no longer available")
            if product.stock_quantity < quantity:
                raise InsufficientStock(product.name, product.stock_quantity, quantity)
            subtotal += product.price * quantity

        # 3️⃣ Price
        tax, shipping, total = price_order(subtotal, settings)

        # 4️⃣ Create order with frozen item prices
        order = Order(
            user_id=user_id,
            order_number=generate_order_number(db),
            subtotal=subtotal,
            tax_amount=tax,
            shipping_fee=shipping,
            total_amount=total,
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            shipping_address=details.shipping_address,
            payment_method=details.payment_method,
            notes=details.notes,
        )
        db.add(order)
        db.flush()  # get order.id

        for product_id, quantity in quantities.items():
            unit_price = products[product_id].price
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price=unit_price,
                    total_price=unit_price * quantity,
                )
            )

        # 5️⃣ Decrement stock, never below zero
        for product_id, quantity in quantities.items():
            updated = (
                db.query(Product)
                .filter(Product.id == product_id, Product.stock_quantity >= quantity)
                .update(
                    {Product.stock_quantity: Product.stock_quantity - quantity},
                    synchronize_session=False,
                )
            )
            if updated != 1:
                # another checkout took the stock after our read
                available = (
                    db.query(Product.stock_quantity)
                    .filter(Product.id == product_id)
                    .scalar()
                )
                raise InsufficientStock(products[product_id].name, available or 0, quantity)

        # 6️⃣ Remove purchased products from the cart
        (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.product_id.in_(list(quantities)))
            .delete(synchronize_session=False)
        )

        db.commit()

    except ShopError as exc:
        db.rollback()
        logger.info("Checkout rejected for user %s: %s", user_id, exc.message)
        raise

    except SQLAlchemyError:
        db.rollback()
        logger.exception("Checkout rolled back for user %s", user_id)
        raise InternalError("Order placement failed")

    db.refresh(order)
    logger.info(
        "Order %s created for user %s, total %s",
        order.order_number,
        user_id,
        order.total_amount,
    )
    return order


def create_order_from_cart(
    db: Session,
    user: User,
    details: CheckoutDetails,
    settings: Settings,
) -> Order:
    cart_items = (
        db.query(CartItem)
        .join(Product, CartItem.product_id == Product.id)
        .filter(CartItem.user_id == user.id, Product.is_active.is_(True))
        .order_by(CartItem.id)
        .all()
    )

    if not cart_items:
        raise EmptyCart()

    quantities = OrderedDict((item.product_id, item.quantity) for item in cart_items)
    return place_order(db, user, quantities, details, settings)


def create_order_from_items(
    db: Session,
    user: User,
    data: OrderCreate,
    settings: Settings,
) -> Order:
    # Repeated product ids are merged into one line
    quantities = OrderedDict()
    for line in data.items:
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
    return place_order(db, user, quantities, data, settings)


def get_order_for(db: Session, user: User, order_id: int, lock: bool = False) -> Order:
    query = db.query(Order).filter(Order.id == order_id)
    if not user.is_admin:
        query = query.filter(Order.user_id == user.id)
    if lock:
        query = query.with_for_update().populate_existing()

    order = query.first()
    if not order:
        raise NotFound("Order with this ID does not exist or you do not have access to it")
    return order


def _ensure_cancellable(order: Order) -> None:
    if order.status == OrderStatus.DELIVERED:
        raise InvalidTransition("Delivered orders cannot be cancelled")
    if order.status == OrderStatus.CANCELLED:
        raise InvalidTransition("This order has already been cancelled")


def cancel_order(db: Session, order: Order, reason: Optional[str] = None) -> Order:
    """Cancel a non-terminal order and put its items back into stock."""
    _ensure_cancellable(order)

    try:
        for item in order.items:
            (
                db.query(Product)
                .filter(Product.id == item.product_id)
                .update(
                    {Product.stock_quantity: Product.stock_quantity + item.quantity},
                    synchronize_session=False,
                )
            )

        notes = order.notes or ""
        if reason:
            notes += f"\nCancellation reason: {reason}"
        notes += f"\nCancelled on: {datetime.now(timezone.utc).isoformat()}"

        order.status = OrderStatus.CANCELLED
        order.notes = notes
        db.commit()

    except SQLAlchemyError:
        db.rollback()
        logger.exception("Cancellation of order %s rolled back", order.id)
        raise InternalError("Order cancellation failed")

    db.refresh(order)
    logger.info("Order %s cancelled", order.order_number)
    return order


def change_status(db: Session, order: Order, new_status: OrderStatus) -> Order:
    # delivered and cancelled are final
    if order.is_terminal:
        raise InvalidTransition(
            f"{order.status.value.capitalize()} orders cannot be changed to other statuses"
        )

    if new_status == OrderStatus.CANCELLED:
        return cancel_order(db, order)

    previous = order.status
    order.status = new_status
    db.commit()
    db.refresh(order)

    logger.info(
        "Order %s status changed from %s to %s",
        order.order_number,
        previous.value,
        new_status.value,
    )
    return order


def _period_start(period: str, now: datetime) -> datetime:
    today = datetime.combine(now.date(), datetime.min.time())
    if period == "day":
        return today
    if period == "week":
        return today - timedelta(days=today.weekday())
    if period == "year":
        return today.replace(month=1, day=1)
    return today.replace(day=1)


def order_stats(db: Session, period: str) -> OrderStats:
    since = _period_start(period, datetime.now(timezone.utc).replace(tzinfo=None))
    in_period = Order.created_at >= since

    status_rows = (
        db.query(Order.status, func.count(Order.id), func.sum(Order.total_amount))
        .filter(in_period)
        .group_by(Order.status)
        .all()
    )

    product_rows = (
        db.query(
            Product.id,
            Product.name,
            func.sum(OrderItem.quantity).label("total_sold"),
            func.sum(OrderItem.total_price),
        )
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, OrderItem.order_id == Order.id)
        .filter(in_period)
        .group_by(Product.id, Product.name)
        .order_by(func.sum(OrderItem.quantity).desc(), Product.id)
        .limit(TOP_PRODUCTS_LIMIT)
        .all()
    )

    total_orders, total_revenue, average, paid = (
        db.query(
            func.count(Order.id),
            func.sum(Order.total_amount),
            func.avg(Order.total_amount),
            func.sum(
                case(
                    (Order.payment_status == PaymentStatus.PAID, Order.total_amount),
                    else_=0,
                )
            ),
        )
        .filter(in_period)
        .one()
    )

    return OrderStats(
        period=period,
        status_summary=[
            StatusSummary(status=row[0], count=row[1], total_amount=_money(row[2]))
            for row in status_rows
        ],
        top_products=[
            TopProduct(
                product_id=row[0],
                name=row[1],
                total_sold=int(row[2] or 0),
                total_revenue=_money(row[3]),
            )
            for row in product_rows
        ],
        revenue_summary=RevenueSummary(
            total_orders=total_orders,
            total_revenue=_money(total_revenue),
            average_order_value=_money(average),
            paid_revenue=_money(paid),
        ),
    )


# =====================================================
# API Routes
# =====================================================

def _with_items(query):
    return query.options(
        selectinload(Order.items).joinedload(OrderItem.product),
        joinedload(Order.user),
    )


@router.get("", response_model=Envelope[OrderList])
def read_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    query = _with_items(db.query(Order))

    if not current_user.is_admin:
        query = query.filter(Order.user_id == current_user.id)
    if order_status:
        query = query.filter(Order.status == order_status)
    if start_date:
        query = query.filter(Order.created_at >= datetime.combine(start_date, datetime.min.time()))
    if end_date:
        query = query.filter(
            Order.created_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time())
        )

    query = query.order_by(Order.created_at.desc(), Order.id.desc())
    orders, pagination = paginate(query, page, limit)

    return Envelope(
        data=OrderList(
            orders=[OrderOut.model_validate(o) for o in orders],
            pagination=pagination,
        )
    )


@router.get("/stats", response_model=Envelope[OrderStats])
def read_order_stats(
    period: str = Query("month", pattern="^(day|week|month|year)$"),
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    return Envelope(data=order_stats(db, period))


@router.get("/{order_id}", response_model=Envelope[OrderOut])
def read_order(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = get_order_for(db, current_user, order_id)
    return Envelope(data=OrderOut.model_validate(order))


@router.get("/{order_id}/invoice", response_model=Envelope[Invoice])
def read_order_invoice(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = get_order_for(db, current_user, order_id)

    invoice = Invoice(
        order=OrderOut.model_validate(order),
        customer=CustomerInfo.model_validate(order.user),
        invoice_details=InvoiceDetails(
            subtotal=sum((item.total_price for item in order.items), Decimal("0")),
            tax=order.tax_amount,
            shipping=order.shipping_fee,
            total=order.total_amount,
        ),
    )
    return Envelope(data=invoice)


@router.post(
    "",
    response_model=Envelope[OrderOut],
    status_code=status.HTTP_201_CREATED
)
def place_order_with_items(
    data: OrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    order = create_order_from_items(db, current_user, data, settings)
    return Envelope(
        message="Order created successfully",
        data=OrderOut.model_validate(order),
    )


@router.post(
    "/from-cart",
    response_model=Envelope[OrderOut],
    status_code=status.HTTP_201_CREATED
)
def place_order_from_cart(
    data: CheckoutDetails,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    order = create_order_from_cart(db, current_user, data, settings)
    return Envelope(
        message="Order created successfully from cart",
        data=OrderOut.model_validate(order),
    )


@router.put("/{order_id}/status", response_model=Envelope[OrderOut])
def update_order_status(
    order_id: int,
    data: StatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    order = get_order_for(db, admin, order_id, lock=True)
    order = change_status(db, order, data.status)
    return Envelope(
        message=f"Order status updated to {order.status.value}",
        data=OrderOut.model_validate(order),
    )


@router.put("/{order_id}/payment-status", response_model=Envelope[OrderOut])
def update_payment_status(
    order_id: int,
    data: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    order = get_order_for(db, admin, order_id, lock=True)
    order.payment_status = data.payment_status
    db.commit()
    db.refresh(order)

    logger.info(
        "Order %s payment status set to %s",
        order.order_number,
        data.payment_status.value,
    )
    return Envelope(
        message=f"Payment status updated to {data.payment_status.value}",
        data=OrderOut.model_validate(order),
    )


@router.post("/{order_id}/cancel", response_model=Envelope[OrderOut])
def cancel(
    order_id: int,
    data: Optional[CancelRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = get_order_for(db, current_user, order_id, lock=True)
    order = cancel_order(db, order, data.reason if data else None)
    return Envelope(
        message="Order cancelled successfully",
        data=OrderOut.model_validate(order),
    )
