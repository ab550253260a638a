"""
Store layer: every query the API runs goes through here.

Functions take an ORM session as their first argument. Mutations run inside
`transaction()` so they either commit as a whole or leave nothing behind.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from database import create_record, transaction
from models import CartItem, Category, Order, OrderItem, Product, User
from schemas import MAX_INT, CategoryIn, ProductIn, SignUpRequest

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class StorageError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(StorageError):
    status_code = 400


class NotFoundError(StorageError):
    status_code = 404


class ConflictError(StorageError):
    status_code = 409


class EmptyCartError(BadRequestError):
    def __init__(self):
        super().__init__("Cart is empty")


class InsufficientStockError(ConflictError):
    def __init__(self, product_name: str):
        super().__init__(f"Insufficient stock for {product_name}")
        self.product_name = product_name


# -----------------
# Users
# -----------------

def get_user_by_username(db: Session, username: str) -> Optional[User]:
    return db.scalar(select(User).where(User.username == username))


def create_user(db: Session, payload: SignUpRequest, password_hash: str, role: str = "customer") -> User:
    if get_user_by_username(db, payload.username):
        raise BadRequestError("Username already registered")
    try:
        with transaction(db):
            user = User(
                username=payload.username,
                password_hash=password_hash,
                name=payload.name,
                address=payload.address,
                role=role,
            )
            db.add(user)
            db.flush()
    except IntegrityError:
        # lost a race with a concurrent signup
        raise BadRequestError("Username already registered") from None
    logger.info("Registered %s user %r", role, user.username)
    return user


# -----------------
# Catalog
# -----------------

def list_products(db: Session, category_id: Optional[int] = None, search: Optional[str] = None) -> List[Product]:
    query = select(Product).options(joinedload(Product.category))
    if category_id is not None:
        query = query.where(Product.category_id == category_id)
    if search:
        query = query.where(Product.name.icontains(search, autoescape=True))
    query = query.order_by(Product.created_at.desc(), Product.id.desc())
    return list(db.scalars(query))


def get_product(db: Session, product_id: int) -> Product:
    product = db.scalar(
        select(Product).options(joinedload(Product.category)).where(Product.id == product_id)
    )
    if product is None:
        raise NotFoundError("Product not found")
    return product


def _reject_nulls(changes: Dict[str, Any], nullable: tuple) -> None:
    for key, value in changes.items():
        if value is None and key not in nullable:
            raise BadRequestError(f"{key} cannot be null")


def _check_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is not None and db.get(Category, category_id) is None:
        raise BadRequestError("Category does not exist")


def create_product(db: Session, payload: ProductIn) -> Product:
    _check_category(db, payload.category_id)
    with transaction(db):
        product = create_record(db, Product, payload)
    logger.info("Created product %s (%s)", product.id, product.name)
    return get_product(db, product.id)


def update_product(db: Session, product_id: int, changes: Dict[str, Any]) -> Product:
    product = get_product(db, product_id)
    _reject_nulls(changes, nullable=("category_id", "description", "image_url"))
    if "category_id" in changes:
        _check_category(db, changes["category_id"])
    with transaction(db):
        for key, value in changes.items():
            setattr(product, key, value)
    db.refresh(product)
    return product


def delete_product(db: Session, product_id: int) -> None:
    product = get_product(db, product_id)
    ordered = db.scalar(select(func.count()).select_from(OrderItem).where(OrderItem.product_id == product_id))
    if ordered:
        raise ConflictError("Product has been ordered and cannot be deleted")
    with transaction(db):
        db.execute(delete(CartItem).where(CartItem.product_id == product_id))
        db.delete(product)
    logger.info("Deleted product %s", product_id)


def list_categories(db: Session) -> List[Category]:
    return list(db.scalars(select(Category).order_by(Category.name)))


def get_category(db: Session, category_id: int) -> Category:
    category = db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    return category


def _check_slug(db: Session, slug: str, exclude_id: Optional[int] = None) -> None:
    query = select(Category.id).where(Category.slug == slug)
    if exclude_id is not None:
        query = query.where(Category.id != exclude_id)
    if db.scalar(query) is not None:
        raise ConflictError("Slug already in use")


def create_category(db: Session, payload: CategoryIn) -> Category:
    _check_slug(db, payload.slug)
    try:
        with transaction(db):
            category = create_record(db, Category, payload)
    except IntegrityError:
        raise ConflictError("Slug already in use") from None
    return category


def update_category(db: Session, category_id: int, changes: Dict[str, Any]) -> Category:
    category = get_category(db, category_id)
    _reject_nulls(changes, nullable=("description",))
    if "slug" in changes:
        _check_slug(db, changes["slug"], exclude_id=category_id)
    try:
        with transaction(db):
            for key, value in changes.items():
                setattr(category, key, value)
            db.flush()
    except IntegrityError:
        raise ConflictError("Slug already in use") from None
    return category


def delete_category(db: Session, category_id: int) -> None:
    category = get_category(db, category_id)
    with transaction(db):
        # products outlive their category
        db.execute(update(Product).where(Product.category_id == category_id).values(category_id=None))
        db.delete(category)
    logger.info("Deleted category %s", category_id)


# -----------------
# Cart
# -----------------

def get_cart(db: Session, user_id: int) -> List[CartItem]:
    query = (
        select(CartItem)
        .options(joinedload(CartItem.product))
        .where(CartItem.user_id == user_id)
        .order_by(CartItem.id)
    )
    return list(db.scalars(query))


def cart_total(lines: List[CartItem]) -> Decimal:
    total = sum((line.product.price * line.quantity for line in lines), Decimal("0"))
    return total.quantize(CENTS)


def add_to_cart(db: Session, user_id: int, product_id: int, quantity: int = 1) -> CartItem:
    if db.get(Product, product_id) is None:
        raise NotFoundError("Product not found")
    existing = db.scalar(
        select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    )
    if existing is not None and existing.quantity + quantity > MAX_INT:
        raise BadRequestError("Quantity too large")
    with transaction(db):
        if existing is not None:
            existing.quantity += quantity
            item = existing
        else:
            item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
            db.add(item)
    return item


def _owned_cart_item(db: Session, user_id: int, item_id: int) -> CartItem:
    item = db.get(CartItem, item_id)
    # someone else's line looks the same as a missing one
    if item is None or item.user_id != user_id:
        raise NotFoundError("Cart item not found")
    return item


def update_cart_item(db: Session, user_id: int, item_id: int, quantity: int) -> CartItem:
    item = _owned_cart_item(db, user_id, item_id)
    with transaction(db):
        item.quantity = quantity
    return item


def remove_from_cart(db: Session, user_id: int, item_id: int) -> None:
    item = _owned_cart_item(db, user_id, item_id)
    with transaction(db):
        db.delete(item)


def clear_cart(db: Session, user_id: int) -> None:
    with transaction(db):
        db.execute(delete(CartItem).where(CartItem.user_id == user_id))


# -----------------
# Orders
# -----------------

def place_order(db: Session, user: User, address: Optional[str] = None) -> Order:
    """
    Turn the user's cart into an order.

    In one transaction: snapshot the cart into an Order and its OrderItems at
    current prices, decrement stock, and empty the cart. A line whose product
    does not have enough stock aborts the whole thing.
    """
    try:
        with transaction(db):
            lines = get_cart(db, user.id)
            if not lines:
                raise EmptyCartError()
            shipping_address = address or user.address
            if not shipping_address:
                raise BadRequestError("Shipping address is required")

            order = Order(user_id=user.id, address=shipping_address, total=cart_total(lines), status="pending")
            db.add(order)
            db.flush()

            for line in lines:
                db.add(OrderItem(
                    order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price=line.product.price,
                ))
                result = db.execute(
                    update(Product)
                    .where(Product.id == line.product_id, Product.stock >= line.quantity)
                    .values(stock=Product.stock - line.quantity)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise InsufficientStockError(line.product.name)

            db.execute(delete(CartItem).where(CartItem.user_id == user.id))
    except StorageError as exc:
        logger.info("Order for user %s rejected: %s", user.id, exc.message)
        raise

    # stock was changed behind the identity map
    db.expire_all()
    logger.info("Placed order %s for user %s, total %s", order.id, user.id, order.total)
    return get_order(db, user, order.id)


def _orders_query(user: User):
    query = select(Order).options(selectinload(Order.items).joinedload(OrderItem.product))
    if user.role != "admin":
        query = query.where(Order.user_id == user.id)
    return query


def list_orders(db: Session, user: User) -> List[Order]:
    query = _orders_query(user).order_by(Order.created_at.desc(), Order.id.desc())
    return list(db.scalars(query))


def get_order(db: Session, user: User, order_id: int) -> Order:
    order = db.scalar(_orders_query(user).where(Order.id == order_id))
    if order is None:
        raise NotFoundError("Order not found")
    return order


def update_order_status(db: Session, order_id: int, status: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found")
    with transaction(db):
        order.status = status
    logger.info("Order %s is now %s", order_id, status)
    return order


# -----------------
# Admin
# -----------------

def get_stats(db: Session) -> Dict[str, Any]:
    total_users = db.scalar(select(func.count()).select_from(User))
    total_orders = db.scalar(select(func.count()).select_from(Order))
    revenue = db.scalar(select(func.sum(Order.total)))
    return {
        "total_users": int(total_users or 0),
        "total_orders": int(total_orders or 0),
        "total_revenue": float(revenue or 0),
    }


# -----------------
# Seed data
# -----------------

SAMPLE_CATALOG = [
    {
        "category": {"name": "Electronics", "slug": "electronics", "description": "Gadgets and devices"},
        "products": [
            {"name": "Smartphone X", "description": "Latest model with high-res camera", "price": "999.00",
             "stock": 50, "image_url": "https://placehold.co/600x400?text=Smartphone"},
            {"name": "Laptop Pro", "description": "Powerful laptop for professionals", "price": "1499.00",
             "stock": 20, "image_url": "https://placehold.co/600x400?text=Laptop"},
        ],
    },
    {
        "category": {"name": "Clothing", "slug": "clothing", "description": "Apparel and fashion"},
        "products": [
            {"name": "Classic T-Shirt", "description": "Cotton t-shirt", "price": "29.99",
             "stock": 100, "image_url": "https://placehold.co/600x400?text=T-Shirt"},
        ],
    },
]


def seed_database(db: Session, admin_username: str, admin_password_hash: str, seed_catalog: bool) -> None:
    if get_user_by_username(db, admin_username) is None:
        with transaction(db):
            db.add(User(username=admin_username, password_hash=admin_password_hash, name="Administrator", role="admin"))
        logger.info("Created admin account %r", admin_username)

    if not seed_catalog or db.scalar(select(func.count()).select_from(Category)):
        return

    logger.info("Seeding sample catalog...")
    with transaction(db):
        for entry in SAMPLE_CATALOG:
            category = create_record(db, Category, CategoryIn(**entry["category"]))
            for product in entry["products"]:
                create_record(db, Product, ProductIn(category_id=category.id, **product))
    logger.info("Sample catalog seeded")
