import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import storage
from auth import SESSION_COOKIE, authenticate, current_user, end_session, hash_password, require_admin, session_token, start_session
from config import Settings
from database import Database, get_db
from models import User
from schemas import (
    MAX_INT,
    AddToCartRequest,
    AuthResponse,
    CartItemOut,
    CartOut,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    OrderOut,
    OrderWithItems,
    PlaceOrderRequest,
    ProductIn,
    ProductUpdate,
    ProductWithCategory,
    SignInRequest,
    SignUpRequest,
    Stats,
    UpdateCartItemRequest,
    UpdateOrderStatusRequest,
    UserOut,
)

logger = logging.getLogger(__name__)

PathId = Annotated[int, Path(ge=1, le=MAX_INT)]


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    database = database or Database(settings.database_url)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_tables()
        with database.session() as db:
            storage.seed_database(
                db,
                admin_username=settings.admin_username,
                admin_password_hash=hash_password(settings.admin_password),
                seed_catalog=settings.seed_catalog,
            )
        logger.info("Storefront API started (%s)", settings.environment)
        yield
        database.dispose()

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(storage.StorageError)
    async def storage_error_handler(request: Request, exc: storage.StorageError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    _register_routes(app)
    return app


def _set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.environment == "production",
    )


def _register_routes(app: FastAPI) -> None:

    @app.get("/")
    def root():
        return {"name": "Storefront API", "status": "ok"}

    @app.get("/test")
    def test_database(request: Request):
        resp = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
            "connection_status": "Not Connected",
            "tables": [],
        }
        try:
            resp["tables"] = request.app.state.database.table_names()[:10]
            resp["database"] = "✅ Connected & Working"
            resp["connection_status"] = "Connected"
        except Exception as e:
            logger.exception("Database check failed")
            resp["database"] = f"❌ Error: {str(e)[:80]}"
        return resp

    # -----------------
    # Auth
    # -----------------
    @app.post("/auth/signup", response_model=AuthResponse, status_code=201)
    def signup(payload: SignUpRequest, request: Request, response: Response, db: Session = Depends(get_db)):
        settings = request.app.state.settings
        user = storage.create_user(db, payload, hash_password(payload.password))
        token = start_session(db, user, settings.session_ttl_hours)
        _set_session_cookie(response, token, settings)
        return AuthResponse(token=token, user=UserOut.model_validate(user))

    @app.post("/auth/signin", response_model=AuthResponse)
    def signin(payload: SignInRequest, request: Request, response: Response, db: Session = Depends(get_db)):
        settings = request.app.state.settings
        user = authenticate(db, payload.username, payload.password)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid credentials")
        token = start_session(db, user, settings.session_ttl_hours)
        _set_session_cookie(response, token, settings)
        return AuthResponse(token=token, user=UserOut.model_validate(user))

    @app.post("/auth/signout", status_code=204)
    def signout(request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)):
        end_session(db, session_token(request))
        response = Response(status_code=204)
        response.delete_cookie(SESSION_COOKIE)
        return response

    @app.get("/auth/me", response_model=UserOut)
    def me(user: User = Depends(current_user)):
        return user

    # -----------------
    # Catalog
    # -----------------
    @app.get("/products", response_model=List[ProductWithCategory])
    def list_products(category_id: Optional[int] = Query(None, ge=1, le=MAX_INT), search: Optional[str] = None, db: Session = Depends(get_db)):
        return storage.list_products(db, category_id=category_id, search=search)

    @app.get("/products/{product_id}", response_model=ProductWithCategory)
    def get_product(product_id: PathId, db: Session = Depends(get_db)):
        return storage.get_product(db, product_id)

    @app.post("/products", response_model=ProductWithCategory, status_code=201)
    def create_product(payload: ProductIn, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        return storage.create_product(db, payload)

    @app.put("/products/{product_id}", response_model=ProductWithCategory)
    def update_product(product_id: PathId, payload: ProductUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        return storage.update_product(db, product_id, payload.model_dump(exclude_unset=True))

    @app.delete("/products/{product_id}", status_code=204)
    def delete_product(product_id: PathId, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        storage.delete_product(db, product_id)
        return Response(status_code=204)

    @app.get("/categories", response_model=List[CategoryOut])
    def list_categories(db: Session = Depends(get_db)):
        return storage.list_categories(db)

    @app.post("/categories", response_model=CategoryOut, status_code=201)
    def create_category(payload: CategoryIn, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        return storage.create_category(db, payload)

    @app.put("/categories/{category_id}", response_model=CategoryOut)
    def update_category(category_id: PathId, payload: CategoryUpdate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        return storage.update_category(db, category_id, payload.model_dump(exclude_unset=True))

    @app.delete("/categories/{category_id}", status_code=204)
    def delete_category(category_id: PathId, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        storage.delete_category(db, category_id)
        return Response(status_code=204)

    # -----------------
    # Cart
    # -----------------
    @app.get("/cart", response_model=CartOut)
    def get_cart(user: User = Depends(current_user), db: Session = Depends(get_db)):
        lines = storage.get_cart(db, user.id)
        return {"items": lines, "total": storage.cart_total(lines)}

    @app.post("/cart", response_model=CartItemOut, status_code=201)
    def add_to_cart(payload: AddToCartRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
        return storage.add_to_cart(db, user.id, payload.product_id, payload.quantity)

    @app.patch("/cart/{item_id}", response_model=CartItemOut)
    def update_cart_item(item_id: PathId, payload: UpdateCartItemRequest, user: User = Depends(current_user), db: Session = Depends(get_db)):
        return storage.update_cart_item(db, user.id, item_id, payload.quantity)

    @app.delete("/cart/{item_id}", status_code=204)
    def remove_from_cart(item_id: PathId, user: User = Depends(current_user), db: Session = Depends(get_db)):
        storage.remove_from_cart(db, user.id, item_id)
        return Response(status_code=204)

    @app.delete("/cart", status_code=204)
    def clear_cart(user: User = Depends(current_user), db: Session = Depends(get_db)):
        storage.clear_cart(db, user.id)
        return Response(status_code=204)

    # -----------------
    # Orders (payment is not collected; orders start as pending)
    # -----------------
    @app.get("/orders", response_model=List[OrderWithItems])
    def list_orders(user: User = Depends(current_user), db: Session = Depends(get_db)):
        return storage.list_orders(db, user)

    @app.get("/orders/{order_id}", response_model=OrderWithItems)
    def get_order(order_id: PathId, user: User = Depends(current_user), db: Session = Depends(get_db)):
        return storage.get_order(db, user, order_id)

    @app.post("/orders", response_model=OrderWithItems, status_code=201)
    def place_order(payload: Optional[PlaceOrderRequest] = None, user: User = Depends(current_user), db: Session = Depends(get_db)):
        address = payload.address if payload else None
        return storage.place_order(db, user, address)

    @app.patch("/orders/{order_id}/status", response_model=OrderOut)
    def update_order_status(order_id: PathId, payload: UpdateOrderStatusRequest, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        return storage.update_order_status(db, order_id, payload.status)

    # -----------------
    # Admin
    # -----------------
    @app.get("/stats", response_model=Stats)
    def stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
        return storage.get_stats(db)


app = create_app()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
