from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .schemas import Pagination

# ---------- CATEGORY ----------

class CategoryBase(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class CategoryStatusUpdate(BaseModel):
    is_active: bool


class CategoryOut(CategoryBase):
    id: int
    is_active: bool
    product_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ---------- PRODUCT ----------

class ProductBase(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    stock_quantity: int = Field(ge=0)
    category_id: Optional[int] = None
    image_url: Optional[str] = Field(default=None, max_length=500)
    is_featured: bool = False


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    image_url: Optional[str] = Field(default=None, max_length=500)
    is_featured: Optional[bool] = None


class ProductOut(ProductBase):
    id: int
    category_name: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductList(BaseModel):
    products: List[ProductOut]
    pagination: Pagination


class CategoryProducts(BaseModel):
    category: CategoryOut
    products: List[ProductOut]
    pagination: Pagination


class ProductStats(BaseModel):
    total_products: int
    total_stock: int
    average_price: Decimal
    featured_products: int
    out_of_stock: int
    low_stock: int


# ---------- SERVICE ----------

class ServiceBase(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    duration: Optional[int] = Field(default=None, ge=1)
    image_url: Optional[str] = Field(default=None, max_length=500)


class ServiceCreate(ServiceBase):
    pass


class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    duration: Optional[int] = Field(default=None, ge=1)
    image_url: Optional[str] = Field(default=None, max_length=500)


class ServiceStatusUpdate(BaseModel):
    is_available: bool


class ServiceOut(ServiceBase):
    id: int
    is_available: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServiceList(BaseModel):
    services: List[ServiceOut]
    pagination: Pagination


class ServiceAvailability(BaseModel):
    service: ServiceOut
    date: str
    available_slots: List[str]
    booked_slots: List[str]


# =========================
# Cart Schemas
# =========================

class CartItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(1, gt=0)  # quantity must be > 0


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., gt=0)


class CartBulkAdd(BaseModel):
    items: List[CartItemCreate] = Field(..., min_length=1)


class CartItemOut(BaseModel):
    id: int
    product_id: int
    name: str
    price: Decimal
    image_url: Optional[str] = None
    stock_quantity: int
    is_active: bool
    quantity: int
    subtotal: Decimal
    created_at: Optional[datetime] = None


class CartSummary(BaseModel):
    total_items: int
    total_amount: Decimal


class CartOut(BaseModel):
    cart_items: List[CartItemOut]
    summary: CartSummary


class CartAddResult(BaseModel):
    action: str
    cart_item_id: int
    quantity: int


class CartBulkProcessed(BaseModel):
    index: int
    product_id: int
    action: str
    quantity: int


class CartBulkError(BaseModel):
    index: int
    product_id: int
    error: str


class CartBulkResult(BaseModel):
    processed: List[CartBulkProcessed]
    errors: List[CartBulkError]


class CartCount(BaseModel):
    total_items: int


class DeletedCount(BaseModel):
    deleted_items: int
