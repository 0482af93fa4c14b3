# payments.py
from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .dependencies import get_current_user, get_db
from .errors import (
    AlreadyPaid,
    AmountMismatch,
    InternalError,
    InvalidTransition,
    NotFound,
    ShopError,
)
from .models import (
    Order,
    OrderStatus,
    Payment,
    PaymentRecordStatus,
    PaymentStatus,
    User,
)
from .order import make_reference
from .schemas import Envelope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

# Largest difference between the order total and the paid amount
AMOUNT_TOLERANCE = Decimal("0.01")


# ---------------------------
# Pydantic Schemas
# ---------------------------
class QuickPaymentRequest(BaseModel):
    order_id: int = Field(..., ge=1)
    payment_method: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., gt=0)


class QuickPaymentResult(BaseModel):
    payment_id: int
    status: PaymentRecordStatus
    reference_number: str


class PaymentOut(BaseModel):
    id: int
    order_id: int
    order_number: str
    order_total: Decimal
    amount: Decimal
    payment_method: str
    status: PaymentRecordStatus
    reference_number: str
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---------------------------
# Payment processing
# ---------------------------
def process_quick_payment(db: Session, user: User, data: QuickPaymentRequest) -> Payment:
    """
    Auto-approve a payment for one of the user's orders.
    There is no gateway: a matching amount is accepted immediately.
    """
    user_id = user.id

    try:
        order = (
            db.query(Order)
            .filter(Order.id == data.order_id, Order.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not order:
            raise NotFound("Order not found or does not belong to you")

        if order.payment_status == PaymentStatus.PAID:
            raise AlreadyPaid()

        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition("Cancelled orders cannot be paid")

        if abs(order.total_amount - data.amount) > AMOUNT_TOLERANCE:
            raise AmountMismatch()

        payment = Payment(
            order_id=order.id,
            user_id=user_id,
            amount=data.amount,
            payment_method=data.payment_method,
            status=PaymentRecordStatus.SUCCESS,
            reference_number=make_reference("PAY"),
            paid_at=datetime.now(timezone.utc),
        )
        db.add(payment)

        order.payment_status = PaymentStatus.PAID
        # Orders already in fulfilment keep their status
        if order.status == OrderStatus.PENDING:
            order.status = OrderStatus.CONFIRMED

        db.commit()

    except ShopError:
        db.rollback()
        raise

    except SQLAlchemyError:
        db.rollback()
        logger.exception("Payment for order %s rolled back", data.order_id)
        raise InternalError("Failed to create payment record")

    db.refresh(payment)
    logger.info(
        "Payment %s processed for order %s, amount %s",
        payment.reference_number,
        payment.order_id,
        payment.amount,
    )
    return payment


# ---------------------------
# Endpoints
# ---------------------------
@router.post("/quick", response_model=Envelope[QuickPaymentResult])
def quick_payment(
    data: QuickPaymentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    payment = process_quick_payment(db, current_user, data)
    return Envelope(
        message="Payment processed successfully",
        data=QuickPaymentResult(
            payment_id=payment.id,
            status=payment.status,
            reference_number=payment.reference_number,
        ),
    )


@router.get("/order/{order_id}", response_model=Envelope[List[PaymentOut]])
def read_order_payments(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = (
        db.query(Order)
        .filter(Order.id == order_id, Order.user_id == current_user.id)
        .first()
    )
    if not order:
        raise NotFound("Order not found or does not belong to you")

    payments = (
        db.query(Payment)
        .options(joinedload(Payment.order))
        .filter(Payment.order_id == order_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    return Envelope(data=[PaymentOut.model_validate(p) for p in payments])


@router.get("/{payment_id}", response_model=Envelope[PaymentOut])
def read_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    payment = (
        db.query(Payment)
        .options(joinedload(Payment.order))
        .filter(Payment.id == payment_id, Payment.user_id == current_user.id)
        .first()
    )
    if not payment:
        raise NotFound("Payment not found")
    return Envelope(data=PaymentOut.model_validate(payment))
