"""
Request and response schemas for the storefront API

Input models forbid unknown fields so malformed bodies are rejected before they
reach the store layer. Output models read straight from ORM rows.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

OrderStatus = Literal["pending", "shipped", "delivered", "cancelled"]
Role = Literal["customer", "admin"]

# largest value an INTEGER column holds on every supported database
MAX_INT = 2**31 - 1

RowId = Annotated[int, Field(ge=1, le=MAX_INT)]
Quantity = Annotated[int, Field(ge=1, le=MAX_INT)]


class InputModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class OutputModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Auth / Users
# -----------------------------
class SignUpRequest(InputModel):
    username: str = Field(..., min_length=3, max_length=80, description="Unique login name")
    password: str = Field(..., min_length=4, max_length=128)
    name: str = Field(..., min_length=1, max_length=120, description="Display name")
    address: Optional[str] = Field(None, max_length=500, description="Default shipping address")


class SignInRequest(InputModel):
    username: str
    password: str


class UserOut(OutputModel):
    id: int
    username: str
    name: str
    role: Role
    address: Optional[str] = None


class AuthResponse(BaseModel):
    token: str
    user: UserOut


# -----------------------------
# Catalog
# -----------------------------
class CategoryIn(InputModel):
    name: str = Field(..., min_length=1, max_length=120)
    slug: str = Field(..., min_length=1, max_length=120, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None


class CategoryUpdate(InputModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    slug: Optional[str] = Field(None, min_length=1, max_length=120, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None


class CategoryOut(OutputModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None


class ProductIn(InputModel):
    category_id: Optional[RowId] = None
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2, description="Unit price")
    stock: int = Field(0, ge=0, le=MAX_INT)
    image_url: Optional[str] = Field(None, max_length=512)


class ProductUpdate(InputModel):
    category_id: Optional[RowId] = None
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    stock: Optional[int] = Field(None, ge=0, le=MAX_INT)
    image_url: Optional[str] = Field(None, max_length=512)


class ProductOut(OutputModel):
    id: int
    category_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    image_url: Optional[str] = None
    created_at: datetime


class ProductWithCategory(ProductOut):
    category: Optional[CategoryOut] = None


# -----------------------------
# Cart
# -----------------------------
class AddToCartRequest(InputModel):
    product_id: RowId
    quantity: Quantity = 1


class UpdateCartItemRequest(InputModel):
    quantity: Quantity


class CartItemOut(OutputModel):
    id: int
    user_id: int
    product_id: int
    quantity: int


class CartLine(CartItemOut):
    product: ProductOut


class CartOut(BaseModel):
    items: List[CartLine]
    total: Decimal


# -----------------------------
# Orders
# -----------------------------
class PlaceOrderRequest(InputModel):
    address: Optional[str] = Field(None, max_length=500, description="Falls back to the user's address")


class UpdateOrderStatusRequest(InputModel):
    status: OrderStatus


class OrderItemOut(OutputModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    product: ProductOut


class OrderOut(OutputModel):
    id: int
    user_id: int
    address: str
    total: Decimal
    status: OrderStatus
    created_at: datetime


class OrderWithItems(OrderOut):
    items: List[OrderItemOut]


# -----------------------------
# Admin
# -----------------------------
class Stats(BaseModel):
    total_users: int
    total_orders: int
    total_revenue: float
