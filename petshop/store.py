import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from .dependencies import get_admin_user, get_db
from .errors import Conflict, NotFound, ValidationFailed
from .models import (
    ACTIVE_APPOINTMENT_STATUSES,
    Appointment,
    Category,
    Product,
    Service,
    User,
)
from .schemas import Envelope, paginate
from .store_schema import (
    CategoryCreate,
    CategoryOut,
    CategoryProducts,
    CategoryStatusUpdate,
    CategoryUpdate,
    ProductCreate,
    ProductList,
    ProductOut,
    ProductStats,
    ProductUpdate,
    ServiceAvailability,
    ServiceCreate,
    ServiceList,
    ServiceOut,
    ServiceStatusUpdate,
    ServiceUpdate,
)

logger = logging.getLogger(__name__)

categories_router = APIRouter(prefix="/api/categories", tags=["categories"])
products_router = APIRouter(prefix="/api/products", tags=["products"])
services_router = APIRouter(prefix="/api/services", tags=["services"])

PRODUCT_SORT_FIELDS = {
    "name": Product.name,
    "price": Product.price,
    "created_at": Product.created_at,
    "stock_quantity": Product.stock_quantity,
}

SERVICE_SORT_FIELDS = {
    "name": Service.name,
    "price": Service.price,
    "created_at": Service.created_at,
    "duration": Service.duration,
}

LOW_STOCK_THRESHOLD = 10

# Bookable hours for services, one slot per hour
OPENING_TIME = time(9, 0)
CLOSING_TIME = time(17, 0)
SLOT_MINUTES = 60


def _ordering(column, sort_order: str, tiebreaker):
    if sort_order.upper() == "ASC":
        return [column.asc(), tiebreaker.asc()]
    return [column.desc(), tiebreaker.asc()]


def _changes_for(payload, model) -> dict:
    """Fields the client sent, rejecting null for NOT NULL columns."""
    changes = payload.model_dump(exclude_unset=True)
    columns = model.__table__.columns
    errors = [
        {"field": key, "message": "Field cannot be null"}
        for key, value in changes.items()
        if value is None and not columns[key].nullable
    ]
    if errors:
        raise ValidationFailed("Validation failed", errors=errors)
    return changes


# ---------- CATEGORY ----------

def get_category_or_404(db: Session, category_id: int) -> Category:
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    return category


def _active_product_count(db: Session, category_id: int) -> int:
    return (
        db.query(func.count(Product.id))
        .filter(Product.category_id == category_id, Product.is_active.is_(True))
        .scalar()
    )


def _ensure_unique_category_name(db: Session, name: str, exclude_id: Optional[int] = None):
    query = db.query(Category.id).filter(Category.name == name)
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise Conflict("A category with this name already exists")


def _deactivate_category(db: Session, category: Category) -> None:
    if _active_product_count(db, category.id) > 0:
        raise Conflict(
            "Category has active products. Please move or delete the products first."
        )
    category.is_active = False


@categories_router.get("", response_model=Envelope[List[CategoryOut]])
def read_categories(db: Session = Depends(get_db)):
    rows = (
        db.query(Category, func.count(Product.id))
        .outerjoin(
            Product,
            (Product.category_id == Category.id) & Product.is_active.is_(True),
        )
        .filter(Category.is_active.is_(True))
        .group_by(Category.id)
        .order_by(Category.name.asc())
        .all()
    )

    categories = []
    for category, product_count in rows:
        out = CategoryOut.model_validate(category)
        out.product_count = product_count
        categories.append(out)

    return Envelope(data=categories)


@categories_router.get("/{category_id}", response_model=Envelope[CategoryOut])
def read_category(category_id: int, db: Session = Depends(get_db)):
    category = get_category_or_404(db, category_id)
    out = CategoryOut.model_validate(category)
    out.product_count = _active_product_count(db, category.id)
    return Envelope(data=out)


@categories_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=Envelope[CategoryOut]
)
def create_category(
    category: CategoryCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    _ensure_unique_category_name(db, category.name)

    db_category = Category(**category.model_dump())
    db.add(db_category)
    db.commit()
    db.refresh(db_category)

    return Envelope(
        message="Category created successfully",
        data=CategoryOut.model_validate(db_category),
    )


@categories_router.put("/{category_id}", response_model=Envelope[CategoryOut])
def update_category(
    category_id: int,
    category: CategoryUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    db_category = get_category_or_404(db, category_id)

    changes = _changes_for(category, Category)
    if not changes:
        raise ValidationFailed("Please provide at least one field to update")

    if changes.get("name"):
        _ensure_unique_category_name(db, changes["name"], exclude_id=category_id)

    for key, value in changes.items():
        setattr(db_category, key, value)

    db.commit()
    db.refresh(db_category)
    return Envelope(
        message="Category updated successfully",
        data=CategoryOut.model_validate(db_category),
    )


@categories_router.delete("/{category_id}", response_model=Envelope[None])
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    category = get_category_or_404(db, category_id)

    # Soft delete - mark as inactive
    _deactivate_category(db, category)
    db.commit()

    logger.info("Category deactivated", extra={"category_id": category_id})
    return Envelope(message="Category deleted successfully")


@categories_router.put("/{category_id}/status", response_model=Envelope[CategoryOut])
def update_category_status(
    category_id: int,
    data: CategoryStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    category = get_category_or_404(db, category_id)

    if data.is_active:
        category.is_active = True
    else:
        _deactivate_category(db, category)

    db.commit()
    db.refresh(category)
    return Envelope(
        message=f"Category {'activated' if data.is_active else 'deactivated'} successfully",
        data=CategoryOut.model_validate(category),
    )


@categories_router.get("/{category_id}/products", response_model=Envelope[CategoryProducts])
def read_category_products(
    category_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    db: Session = Depends(get_db),
):
    category = (
        db.query(Category)
        .filter(Category.id == category_id, Category.is_active.is_(True))
        .first()
    )
    if not category:
        raise NotFound("Category with this ID does not exist or is not active")

    sort_column = PRODUCT_SORT_FIELDS.get(sort_by, Product.created_at)
    query = (
        db.query(Product)
        .options(joinedload(Product.category))
        .filter(Product.category_id == category_id, Product.is_active.is_(True))
        .order_by(*_ordering(sort_column, sort_order, Product.id))
    )
    products, pagination = paginate(query, page, limit)

    return Envelope(
        data=CategoryProducts(
            category=CategoryOut.model_validate(category),
            products=[ProductOut.model_validate(p) for p in products],
            pagination=pagination,
        )
    )


# ---------- PRODUCT ----------

def get_product_or_404(db: Session, product_id: int, active_only: bool = False) -> Product:
    query = db.query(Product).filter(Product.id == product_id)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    product = query.first()
    if not product:
        raise NotFound("Product not found")
    return product


def _ensure_category_exists(db: Session, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    if not db.query(Category.id).filter(Category.id == category_id).first():
        raise ValidationFailed("Invalid category ID")


@products_router.get("", response_model=Envelope[ProductList])
def read_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[int] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    featured: bool = False,
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    db: Session = Depends(get_db),
):
    query = (
        db.query(Product)
        .options(joinedload(Product.category))
        .filter(Product.is_active.is_(True))
    )

    if search:
        term = f"%{search}%"
        query = query.filter(or_(Product.name.ilike(term), Product.description.ilike(term)))
    if category:
        query = query.filter(Product.category_id == category)
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if featured:
        query = query.filter(Product.is_featured.is_(True))

    sort_column = PRODUCT_SORT_FIELDS.get(sort_by, Product.created_at)
    query = query.order_by(*_ordering(sort_column, sort_order, Product.id))

    products, pagination = paginate(query, page, limit)

    return Envelope(
        data=ProductList(
            products=[ProductOut.model_validate(p) for p in products],
            pagination=pagination,
        )
    )


@products_router.get("/featured", response_model=Envelope[List[ProductOut]])
def read_featured_products(
    limit: int = Query(8, ge=1, le=50),
    db: Session = Depends(get_db),
):
    products = (
        db.query(Product)
        .options(joinedload(Product.category))
        .filter(Product.is_featured.is_(True), Product.is_active.is_(True))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )
    return Envelope(data=[ProductOut.model_validate(p) for p in products])


@products_router.get("/stats", response_model=Envelope[ProductStats])
def read_product_stats(
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    base = db.query(Product).filter(Product.is_active.is_(True))

    def count(*criteria):
        return base.filter(*criteria).count()

    stats = ProductStats(
        total_products=base.count(),
        total_stock=base.with_entities(
            func.coalesce(func.sum(Product.stock_quantity), 0)
        ).scalar(),
        average_price=Decimal(
            str(base.with_entities(func.coalesce(func.avg(Product.price), 0)).scalar())
        ).quantize(Decimal("0.01")),
        featured_products=count(Product.is_featured.is_(True)),
        out_of_stock=count(Product.stock_quantity == 0),
        low_stock=count(Product.stock_quantity <= LOW_STOCK_THRESHOLD),
    )
    return Envelope(data=stats)


@products_router.get("/{product_id}", response_model=Envelope[ProductOut])
def read_product(product_id: int, db: Session = Depends(get_db)):
    product = get_product_or_404(db, product_id, active_only=True)
    return Envelope(data=ProductOut.model_validate(product))


@products_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=Envelope[ProductOut]
)
def create_product(
    product: ProductCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    _ensure_category_exists(db, product.category_id)

    db_product = Product(**product.model_dump())

    db.add(db_product)
    db.commit()
    db.refresh(db_product)

    logger.info("Product created", extra={"product_id": db_product.id})
    return Envelope(
        message="Product created successfully",
        data=ProductOut.model_validate(db_product),
    )


@products_router.put("/{product_id}", response_model=Envelope[ProductOut])
def update_product(
    product_id: int,
    product: ProductUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    db_product = get_product_or_404(db, product_id)

    changes = _changes_for(product, Product)
    if "category_id" in changes:
        _ensure_category_exists(db, changes["category_id"])

    for key, value in changes.items():
        setattr(db_product, key, value)

    db.commit()
    db.refresh(db_product)
    return Envelope(
        message="Product updated successfully",
        data=ProductOut.model_validate(db_product),
    )


@products_router.delete("/{product_id}", response_model=Envelope[None])
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    product = get_product_or_404(db, product_id)

    # Soft delete; order items keep referencing the row
    product.is_active = False
    db.commit()

    logger.info("Product deactivated", extra={"product_id": product_id})
    return Envelope(message="Product deleted successfully")


# ---------- SERVICE ----------

def get_service_or_404(db: Session, service_id: int, available_only: bool = False) -> Service:
    query = db.query(Service).filter(Service.id == service_id)
    if available_only:
        query = query.filter(Service.is_available.is_(True))
    service = query.first()
    if not service:
        raise NotFound("Service not found")
    return service


@services_router.get("", response_model=Envelope[ServiceList])
def read_services(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    db: Session = Depends(get_db),
):
    query = db.query(Service).filter(Service.is_available.is_(True))

    if search:
        term = f"%{search}%"
        query = query.filter(or_(Service.name.ilike(term), Service.description.ilike(term)))
    if min_price is not None:
        query = query.filter(Service.price >= min_price)
    if max_price is not None:
        query = query.filter(Service.price <= max_price)

    sort_column = SERVICE_SORT_FIELDS.get(sort_by, Service.created_at)
    query = query.order_by(*_ordering(sort_column, sort_order, Service.id))

    services, pagination = paginate(query, page, limit)
    return Envelope(
        data=ServiceList(
            services=[ServiceOut.model_validate(s) for s in services],
            pagination=pagination,
        )
    )


@services_router.get("/{service_id}", response_model=Envelope[ServiceOut])
def read_service(service_id: int, db: Session = Depends(get_db)):
    service = get_service_or_404(db, service_id, available_only=True)
    return Envelope(data=ServiceOut.model_validate(service))


@services_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=Envelope[ServiceOut]
)
def create_service(
    service: ServiceCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    db_service = Service(**service.model_dump())
    db.add(db_service)
    db.commit()
    db.refresh(db_service)
    return Envelope(
        message="Service created successfully",
        data=ServiceOut.model_validate(db_service),
    )


@services_router.put("/{service_id}", response_model=Envelope[ServiceOut])
def update_service(
    service_id: int,
    service: ServiceUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    db_service = get_service_or_404(db, service_id)

    changes = _changes_for(service, Service)
    if not changes:
        raise ValidationFailed("Please provide at least one field to update")

    for key, value in changes.items():
        setattr(db_service, key, value)

    db.commit()
    db.refresh(db_service)
    return Envelope(
        message="Service updated successfully",
        data=ServiceOut.model_validate(db_service),
    )


@services_router.delete("/{service_id}", response_model=Envelope[None])
def delete_service(
    service_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    service = get_service_or_404(db, service_id)

    # Soft delete - mark as unavailable
    service.is_available = False
    db.commit()
    return Envelope(message="Service deleted successfully")


@services_router.put("/{service_id}/status", response_model=Envelope[ServiceOut])
def update_service_status(
    service_id: int,
    data: ServiceStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(get_admin_user),
):
    service = get_service_or_404(db, service_id)
    service.is_available = data.is_available
    db.commit()
    db.refresh(service)
    return Envelope(
        message=f"Service {'activated' if data.is_available else 'deactivated'} successfully",
        data=ServiceOut.model_validate(service),
    )


def service_slots() -> List[time]:
    slots = []
    current = datetime.combine(date.min, OPENING_TIME)
    closing = datetime.combine(date.min, CLOSING_TIME)
    while current < closing:
        slots.append(current.time())
        current += timedelta(minutes=SLOT_MINUTES)
    return slots


@services_router.get("/{service_id}/availability", response_model=Envelope[ServiceAvailability])
def read_service_availability(
    service_id: int,
    booking_date: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
):
    service = get_service_or_404(db, service_id, available_only=True)

    booked = {
        row.appointment_time
        for row in db.query(Appointment.appointment_time).filter(
            Appointment.service_id == service_id,
            Appointment.appointment_date == booking_date,
            Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        )
    }

    slots = service_slots()
    return Envelope(
        data=ServiceAvailability(
            service=ServiceOut.model_validate(service),
            date=booking_date.isoformat(),
            available_slots=[s.strftime("%H:%M") for s in slots if s not in booked],
            booked_slots=sorted(s.strftime("%H:%M") for s in booked),
        )
    )
