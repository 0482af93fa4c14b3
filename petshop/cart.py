import logging
from decimal import Decimal
from typing import Tuple

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from .dependencies import get_current_user, get_db
from .errors import InsufficientStock, NotFound, ShopError, Unavailable, ValidationFailed
from .models import CartItem, Product, User
from .schemas import Envelope
from .store_schema import (
    CartAddResult,
    CartBulkAdd,
    CartBulkError,
    CartBulkProcessed,
    CartBulkResult,
    CartCount,
    CartItemCreate,
    CartItemOut,
    CartItemUpdate,
    CartOut,
    CartSummary,
    DeletedCount,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cart",
    tags=["cart"],
)


# =====================================================
# Service Logic
# =====================================================

def add_item(db: Session, user: User, product_id: int, quantity: int) -> Tuple[CartItem, bool]:
    """
    Add `quantity` of a product to the user's cart.

    Merges into the existing (user, product) row when there is one.
    Returns the cart row and whether it was newly created.
    """
    if quantity <= 0:
        raise ValidationFailed("Quantity must be at least 1")

    # 1️⃣ Validate product exists and can be sold
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFound("Product not found")

    if not product.is_active:
        raise Unavailable("This product is currently not available")

    # 2️⃣ Check if item already in cart
    cart_item = (
        db.query(CartItem)
        .filter(CartItem.user_id == user.id, CartItem.product_id == product_id)
        .first()
    )

    # 3️⃣ Stock must cover everything the cart would then hold
    new_quantity = quantity + (cart_item.quantity if cart_item else 0)
    if product.stock_quantity < new_quantity:
        raise InsufficientStock(product.name, product.stock_quantity, new_quantity)

    # 4️⃣ Add or increment
    created = cart_item is None
    if created:
        cart_item = CartItem(user_id=user.id, product_id=product_id, quantity=quantity)
        db.add(cart_item)
    else:
        cart_item.quantity = new_quantity

    db.commit()
    db.refresh(cart_item)
    return cart_item, created


def update_item(db: Session, user: User, cart_item_id: int, quantity: int) -> CartItem:
    if quantity <= 0:
        raise ValidationFailed("Quantity must be at least 1")

    cart_item = (
        db.query(CartItem)
        .options(joinedload(CartItem.product))
        .filter(CartItem.id == cart_item_id, CartItem.user_id == user.id)
        .first()
    )
    if not cart_item:
        raise NotFound("Cart item with this ID does not exist or does not belong to you")

    product = cart_item.product
    if not product.is_active:
        raise Unavailable("This product is currently not available")

    if product.stock_quantity < quantity:
        raise InsufficientStock(product.name, product.stock_quantity, quantity)

    cart_item.quantity = quantity
    db.commit()
    db.refresh(cart_item)
    return cart_item


def remove_item(db: Session, user: User, cart_item_id: int) -> int:
    deleted = (
        db.query(CartItem)
        .filter(CartItem.id == cart_item_id, CartItem.user_id == user.id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def clear(db: Session, user: User) -> int:
    deleted = (
        db.query(CartItem)
        .filter(CartItem.user_id == user.id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def get_cart(db: Session, user: User) -> CartOut:
    # Prices and stock are read live; checkout re-validates them
    items = (
        db.query(CartItem)
        .options(joinedload(CartItem.product))
        .filter(CartItem.user_id == user.id)
        .order_by(CartItem.created_at.desc(), CartItem.id.desc())
        .all()
    )

    lines = [
        CartItemOut(
            id=item.id,
            product_id=item.product_id,
            name=item.product.name,
            price=item.product.price,
            image_url=item.product.image_url,
            stock_quantity=item.product.stock_quantity,
            is_active=item.product.is_active,
            quantity=item.quantity,
            subtotal=item.subtotal,
            created_at=item.created_at,
        )
        for item in items
    ]

    summary = CartSummary(
        total_items=sum(line.quantity for line in lines),
        total_amount=sum((line.subtotal for line in lines), Decimal("0")),
    )
    return CartOut(cart_items=lines, summary=summary)


# =====================================================
# API Routes
# =====================================================

@router.get("", response_model=Envelope[CartOut])
def read_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return Envelope(data=get_cart(db, current_user))


@router.get("/count", response_model=Envelope[CartCount])
def read_cart_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    total = (
        db.query(func.coalesce(func.sum(CartItem.quantity), 0))
        .filter(CartItem.user_id == current_user.id)
        .scalar()
    )
    return Envelope(data=CartCount(total_items=total))


@router.post("", response_model=Envelope[CartAddResult])
@router.post("/add", response_model=Envelope[CartAddResult])
def add_item_to_cart(
    data: CartItemCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    cart_item, created = add_item(db, current_user, data.product_id, data.quantity)

    if created:
        response.status_code = status.HTTP_201_CREATED
        message = "Item added to cart successfully"
    else:
        message = "Cart updated successfully"

    return Envelope(
        message=message,
        data=CartAddResult(
            action="added" if created else "updated",
            cart_item_id=cart_item.id,
            quantity=cart_item.quantity,
        ),
    )


@router.post("/bulk-add", response_model=Envelope[CartBulkResult])
def bulk_add_to_cart(
    data: CartBulkAdd,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    processed = []
    errors = []

    for index, item in enumerate(data.items):
        try:
            cart_item, created = add_item(db, current_user, item.product_id, item.quantity)
        except ShopError as exc:
            db.rollback()
            logger.warning(
                "Bulk add skipped item",
                extra={"index": index, "product_id": item.product_id, "error": exc.kind.value},
            )
            errors.append(CartBulkError(index=index, product_id=item.product_id, error=exc.message))
            continue

        processed.append(
            CartBulkProcessed(
                index=index,
                product_id=item.product_id,
                action="added" if created else "updated",
                quantity=cart_item.quantity,
            )
        )

    return Envelope(
        success=not errors,
        message=(
            "All items processed successfully"
            if not errors
            else "Some items could not be processed"
        ),
        data=CartBulkResult(processed=processed, errors=errors),
    )


@router.put("/{cart_item_id}", response_model=Envelope[CartAddResult])
def update_cart_item(
    cart_item_id: int,
    data: CartItemUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    cart_item = update_item(db, current_user, cart_item_id, data.quantity)
    return Envelope(
        message="Cart item updated successfully",
        data=CartAddResult(
            action="updated",
            cart_item_id=cart_item.id,
            quantity=cart_item.quantity,
        ),
    )


@router.delete("", response_model=Envelope[DeletedCount])
@router.delete("/clear", response_model=Envelope[DeletedCount])
def clear_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    deleted = clear(db, current_user)
    return Envelope(
        message="Cart cleared successfully",
        data=DeletedCount(deleted_items=deleted),
    )


@router.delete("/{cart_item_id}", response_model=Envelope[DeletedCount])
def remove_cart_item(
    cart_item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    deleted = remove_item(db, current_user, cart_item_id)
    return Envelope(
        message="Item removed from cart successfully",
        data=DeletedCount(deleted_items=deleted),
    )
