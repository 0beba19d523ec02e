import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

import auth
import config
import database
import inventory
import payments
import reconciliation
from errors import ConflictError, ForbiddenError, MarketplaceError, NotFoundError, ValidationError, from_pydantic
from schemas import (
    CamelModel,
    Category,
    CategoryOut,
    LegalCertifications,
    NutritionalInfo,
    Order,
    OrderItem,
    OrderItemOut,
    OrderOut,
    OrderStatus,
    Payment,
    PaymentOut,
    PaymentStatus,
    Product,
    ProductOut,
    ProductType,
    Role,
    Seller,
    SellerOut,
    SeoDetails,
    ShippingDetails,
    User,
    UserOut,
    from_doc,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; running without a database")
    else:
        database.ensure_indexes()
    yield


app = FastAPI(title="Organic Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body') or 'body'}: {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": errors[0] if errors else "Invalid request", "code": "VALIDATION_ERROR", "errors": errors},
    )


# Request bodies

class RegisterPayload(CamelModel):
    name: str
    username: str = Field(..., min_length=3)
    email: str
    password: str = Field(..., min_length=6)
    phone: str = ""
    address: str = ""
    role: Role = Role.buyer


class LoginPayload(BaseModel):
    username: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ForgotPasswordPayload(BaseModel):
    email: str


class ResetPasswordPayload(BaseModel):
    token: str
    password: str = Field(..., min_length=6)


class UserUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = Field(default=None, min_length=3)
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Optional[Role] = None


class SellerRegistration(CamelModel):
    personal_details: dict = {}
    business_details: dict = {}


class CategoryIn(CamelModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    image: str = ""


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None


class ProductIn(CamelModel):
    name: str
    category: str
    brand: Optional[str] = None
    sku: str
    product_type: ProductType = ProductType.simple
    tags: List[str] = []
    is_organic: bool = True
    variants: Optional[List[dict]] = None
    # used only when no variants list is sent
    size: Optional[Any] = None
    color: Optional[Any] = None
    price: Optional[Any] = None
    discount_price: Optional[Any] = None
    stock: Optional[Any] = None
    unit: Optional[Any] = None
    main_image: str = ""
    additional_images: List[str] = []
    video: Optional[str] = None
    short_description: str = ""
    detailed_description: str = ""
    nutritional_info: Optional[NutritionalInfo] = None
    ingredients: Optional[str] = None
    shelf_life: Optional[str] = None
    shipping_details: Optional[ShippingDetails] = None
    legal_certifications: Optional[LegalCertifications] = None
    seo_details: Optional[SeoDetails] = None
    seller_id: Optional[str] = None


class ProductUpdate(CamelModel):
    name: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    sku: Optional[str] = None
    product_type: Optional[ProductType] = None
    tags: Optional[List[str]] = None
    is_organic: Optional[bool] = None
    variants: Optional[List[dict]] = None
    main_image: Optional[str] = None
    additional_images: Optional[List[str]] = None
    video: Optional[str] = None
    short_description: Optional[str] = None
    detailed_description: Optional[str] = None
    nutritional_info: Optional[NutritionalInfo] = None
    ingredients: Optional[str] = None
    shelf_life: Optional[str] = None
    shipping_details: Optional[ShippingDetails] = None
    legal_certifications: Optional[LegalCertifications] = None
    seo_details: Optional[SeoDetails] = None


class StockUpdate(BaseModel):
    variants: List[dict]


class OrderLine(CamelModel):
    product_id: str
    size: str = inventory.DEFAULT_SIZE
    color: str = ""
    quantity: int = Field(..., ge=1)


class OrderCreate(CamelModel):
    address: str = Field(..., min_length=1)
    total_price: Optional[int] = Field(default=None, ge=0)
    items: List[OrderLine] = []


class OrderStatusChange(CamelModel):
    status: OrderStatus
    version: Optional[int] = None


class PaymentStatusChange(CamelModel):
    status: PaymentStatus
    transaction_id: Optional[str] = None
    version: Optional[int] = None


# Helpers

def _user_out(user: dict) -> dict:
    return from_doc(UserOut, user)


def _get_user(user_id: str) -> dict:
    user = database.collection("user").find_one({"_id": database.to_object_id(user_id, "User")})
    if not user:
        raise NotFoundError("User")
    return user


def _get_category(category_id: str) -> dict:
    category = database.collection("category").find_one({"_id": database.to_object_id(category_id, "Category")})
    if not category:
        raise NotFoundError("Category")
    return category


def _get_product(product_id: str) -> dict:
    product = database.collection("product").find_one({"_id": database.to_object_id(product_id, "Product")})
    if not product:
        raise NotFoundError("Product")
    return product


def _clearable(field_name: str) -> bool:
    field = Product.model_fields[field_name]
    return not field.is_required() and field.default is None


def _check_owner(product: dict, user: dict):
    if user.get("role") != Role.admin.value and product.get("seller_id") != str(user["_id"]):
        raise ForbiddenError("Not authorized to modify this product")


def _order_visible_to(order: dict, user: dict):
    if user.get("role") != Role.admin.value and order.get("buyer_id") != str(user["_id"]):
        raise ForbiddenError("Not authorized to view this order")


@app.get("/")
def root():
    return {"message": "Organic Marketplace Backend Running"}


@app.get("/test")
def test_database():
    try:
        collections = database.db.list_collection_names()
        return {"backend": "ok", "db": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "db": f"error: {str(e)}"}


# Auth endpoints

@app.post("/api/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterPayload):
    if payload.role == Role.admin.value:
        raise ForbiddenError("Admin accounts cannot self-register")
    users = database.collection("user")
    if users.find_one({"$or": [{"email": payload.email}, {"username": payload.username}]}):
        raise ValidationError("Username or email already registered", code="USER_EXISTS")
    user = User(
        name=payload.name,
        username=payload.username,
        email=payload.email,
        password_hash=auth.get_password_hash(payload.password),
        phone=payload.phone,
        address=payload.address,
        role=payload.role,
    )
    user_id = database.create_document("user", user)
    doc = users.find_one({"_id": database.to_object_id(user_id)})
    return {"access_token": auth.token_for_user(doc), "token_type": "bearer", "user": _user_out(doc)}


@app.post("/api/auth/login", response_model=Token)
def login(payload: LoginPayload):
    user = database.collection("user").find_one(
        {"$or": [{"username": payload.username}, {"email": payload.username}]}
    )
    if not user or not auth.verify_password(payload.password, user["password_hash"]):
        raise ValidationError("Incorrect username or password", code="BAD_CREDENTIALS")
    return {"access_token": auth.token_for_user(user), "token_type": "bearer"}


@app.get("/api/auth/me")
def me(user=Depends(auth.get_current_user)):
    return _user_out(user)


# Seed admin user if none exists
@app.post("/api/auth/seed-admin")
def seed_admin(username: str = Body(...), password: str = Body(...), email: str = Body("admin@marketplace.local")):
    users = database.collection("user")
    if users.find_one({"role": Role.admin.value}):
        return {"status": "exists"}
    admin = User(
        name="Admin",
        username=username,
        email=email,
        password_hash=auth.get_password_hash(password),
        role=Role.admin,
    )
    database.create_document("user", admin)
    return {"status": "created"}


RESET_MESSAGE = "If an account with that email exists, we have sent password reset instructions."


@app.post("/api/auth/forgot-password")
def forgot_password(payload: ForgotPasswordPayload, request: Request):
    user = database.collection("user").find_one({"email": payload.email})
    # Same answer either way so accounts cannot be enumerated
    if user:
        token = auth.issue_reset_token(user)
        logger.info("Password reset link: %sreset-password?token=%s", request.base_url, token)
    return {"message": RESET_MESSAGE}


@app.get("/api/auth/reset-password/verify")
def verify_reset_token(token: str = Query("")):
    return {"valid": auth.verify_reset_token(token)}


@app.post("/api/auth/reset-password")
def reset_password(payload: ResetPasswordPayload):
    auth.reset_password(payload.token, payload.password)
    return {"message": "Password has been reset successfully"}


# Users

@app.get("/api/users")
def list_users(admin=Depends(auth.get_current_admin)):
    return [_user_out(u) for u in database.get_documents("user")]


@app.get("/api/users/role/{role}")
def list_users_by_role(role: Role, admin=Depends(auth.get_current_admin)):
    return [_user_out(u) for u in database.get_documents("user", {"role": Role(role).value})]


@app.get("/api/users/{user_id}")
def get_user(user_id: str, user=Depends(auth.get_current_user)):
    if user.get("role") != Role.admin.value and str(user["_id"]) != user_id:
        raise ForbiddenError("Not authorized to view this user")
    return _user_out(_get_user(user_id))


@app.put("/api/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, user=Depends(auth.get_current_user)):
    is_admin = user.get("role") == Role.admin.value
    if not is_admin and str(user["_id"]) != user_id:
        raise ForbiddenError("Not authorized to update this user")
    existing = _get_user(user_id)

    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    # Only admins change roles; passwords go through the reset flow
    if not is_admin:
        updates.pop("role", None)
    if not updates:
        return _user_out(existing)
    updates["updated_at"] = database.now()
    try:
        database.collection("user").update_one({"_id": existing["_id"]}, {"$set": updates})
    except DuplicateKeyError:
        raise ValidationError("Username or email already registered", code="USER_EXISTS")
    return _user_out(_get_user(user_id))


@app.delete("/api/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, admin=Depends(auth.get_current_admin)):
    existing = _get_user(user_id)
    if existing.get("role") == Role.admin.value:
        raise ForbiddenError("Cannot delete admin user")
    database.collection("user").delete_one({"_id": existing["_id"]})
    logger.info("User %s deleted by admin %s", user_id, admin["_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Seller onboarding

@app.post("/api/seller/register", status_code=status.HTTP_201_CREATED)
def register_seller(payload: SellerRegistration, user=Depends(auth.get_current_user)):
    sellers = database.collection("seller")
    if sellers.find_one({"user_id": str(user["_id"])}):
        raise ConflictError("Seller profile already exists", code="SELLER_EXISTS")
    seller = Seller(
        user_id=str(user["_id"]),
        personal_details=payload.personal_details,
        business_details=payload.business_details,
    )
    seller_id = database.create_document("seller", seller)
    if user.get("role") == Role.buyer.value:
        database.collection("user").update_one(
            {"_id": user["_id"]}, {"$set": {"role": Role.seller.value, "updated_at": database.now()}}
        )
    logger.info("Seller profile %s registered for user %s", seller_id, user["_id"])
    return {
        "message": "Seller registration successful",
        "seller": from_doc(SellerOut, sellers.find_one({"_id": database.to_object_id(seller_id)})),
    }


@app.get("/api/seller/status")
def seller_status(user=Depends(auth.get_current_user)):
    seller = database.collection("seller").find_one({"user_id": str(user["_id"])})
    if not seller:
        raise NotFoundError("Seller")
    out = from_doc(SellerOut, seller)
    return {"status": out["status"], "seller": out}


# Products

@app.get("/api/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None):
    query = {}
    if q:
        query["$or"] = [
            {"name": {"$regex": q, "$options": "i"}},
            {"short_description": {"$regex": q, "$options": "i"}},
            {"tags": {"$regex": q, "$options": "i"}},
        ]
    if category:
        query["category"] = category
    return [from_doc(ProductOut, p) for p in database.get_documents("product", query)]


@app.get("/api/products/seller/{seller_id}")
def list_seller_products(seller_id: str):
    return [from_doc(ProductOut, p) for p in database.get_documents("product", {"seller_id": seller_id})]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return from_doc(ProductOut, _get_product(product_id))


@app.post("/api/products", status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductIn, user=Depends(auth.get_current_seller)):
    variants = inventory.normalize_variants(payload.model_dump(by_alias=True))
    data = payload.model_dump(
        exclude={"variants", "size", "color", "price", "discount_price", "stock", "unit", "seller_id"},
        exclude_none=True,
    )
    # Admins may list on behalf of a seller
    seller_id = payload.seller_id if payload.seller_id and user.get("role") == Role.admin.value else str(user["_id"])
    try:
        product = Product(**data, variants=variants, seller_id=seller_id)
    except PydanticValidationError as exc:
        raise from_pydantic(exc)

    if database.collection("product").find_one({"sku": product.sku}):
        raise ValidationError("SKU already exists", code="DUPLICATE_SKU")
    try:
        pid = database.create_document("product", product)
    except DuplicateKeyError:
        raise ValidationError("SKU already exists", code="DUPLICATE_SKU")
    logger.info("Product %s (%s) created by %s", pid, product.sku, user["_id"])
    return from_doc(ProductOut, _get_product(pid))


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, user=Depends(auth.get_current_seller)):
    existing = _get_product(product_id)
    _check_owner(existing, user)

    updates = payload.model_dump(exclude_unset=True)
    if "variants" in updates:
        if updates["variants"] is None:
            raise ValidationError("A product needs at least one variant")
        updates["variants"] = [v.model_dump() for v in inventory.normalize_variants({"variants": updates["variants"]})]
    # null clears optional fields and leaves everything else as it was
    updates = {key: value for key, value in updates.items() if value is not None or _clearable(key)}
    if updates.get("sku") and updates["sku"] != existing.get("sku"):
        if database.collection("product").find_one({"sku": updates["sku"]}):
            raise ValidationError("SKU already exists", code="DUPLICATE_SKU")

    current = Product.model_validate(existing).model_dump()
    try:
        merged = Product.model_validate({**current, **updates}).model_dump()
    except PydanticValidationError as exc:
        raise from_pydantic(exc)
    merged["updated_at"] = database.now()
    database.collection("product").update_one({"_id": existing["_id"]}, {"$set": merged})
    return from_doc(ProductOut, _get_product(product_id))


@app.delete("/api/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(product_id: str, user=Depends(auth.get_current_seller)):
    existing = _get_product(product_id)
    _check_owner(existing, user)
    database.collection("product").delete_one({"_id": existing["_id"]})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/admin/inventory")
def admin_inventory(admin=Depends(auth.get_current_admin)):
    items = list(database.collection("product").find({}, {"name": 1, "sku": 1, "variants": 1}))
    return [
        {
            "id": str(it["_id"]),
            "name": it.get("name"),
            "sku": it.get("sku"),
            "variants": [{"size": v.get("size"), "color": v.get("color", ""), "stock": v.get("stock", 0)} for v in it.get("variants", [])],
            "totalStock": sum(v.get("stock", 0) for v in it.get("variants", [])),
        }
        for it in items
    ]


@app.put("/api/admin/inventory/{sku}")
def admin_update_stock(sku: str, payload: StockUpdate, admin=Depends(auth.get_current_admin)):
    variants = inventory.set_variant_stock(sku, payload.variants)
    return {"status": "updated", "variants": [v.model_dump(by_alias=True) for v in variants]}


# Categories

@app.get("/api/categories")
def list_categories():
    return [from_doc(CategoryOut, c) for c in database.get_documents("category")]


@app.get("/api/categories/{category_id}")
def get_category(category_id: str):
    return from_doc(CategoryOut, _get_category(category_id))


@app.get("/api/categories/{category_id}/products")
def list_category_products(category_id: str):
    category = _get_category(category_id)
    # products may name their category by id or by name
    query = {"category": {"$in": [str(category["_id"]), category["name"]]}}
    return [from_doc(ProductOut, p) for p in database.get_documents("product", query)]


@app.post("/api/categories", status_code=status.HTTP_201_CREATED)
def create_category(payload: CategoryIn, user=Depends(auth.get_current_seller)):
    if database.collection("category").find_one({"name": payload.name}):
        raise ConflictError("Category already exists", code="CATEGORY_EXISTS")
    category = Category(**payload.model_dump(), created_by=str(user["_id"]))
    try:
        category_id = database.create_document("category", category)
    except DuplicateKeyError:
        raise ConflictError("Category already exists", code="CATEGORY_EXISTS")
    return from_doc(CategoryOut, _get_category(category_id))


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, user=Depends(auth.get_current_seller)):
    existing = _get_category(category_id)
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if updates.get("name") and updates["name"] != existing["name"]:
        if database.collection("category").find_one({"name": updates["name"]}):
            raise ConflictError("Category with this name already exists", code="CATEGORY_EXISTS")
    if updates:
        updates["updated_at"] = database.now()
        database.collection("category").update_one({"_id": existing["_id"]}, {"$set": updates})
    return from_doc(CategoryOut, _get_category(category_id))


@app.delete("/api/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: str, admin=Depends(auth.get_current_admin)):
    existing = _get_category(category_id)
    database.collection("category").delete_one({"_id": existing["_id"]})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Orders

def _order_out(order: dict, with_items: bool = False) -> dict:
    out = from_doc(OrderOut, order)
    if with_items:
        items = database.get_documents("orderitem", {"order_id": out["id"]})
        out["items"] = [from_doc(OrderItemOut, it) for it in items]
    return out


def _line_price(product: dict, line: OrderLine) -> int:
    variant = inventory.find_variant(product, line.size, line.color)
    if variant is None:
        raise ValidationError(f"Variant {line.size}/{line.color or '-'} not found for {product.get('sku')}")
    price = variant.get("discount_price")
    return price if price is not None else variant["price"]


@app.post("/api/orders", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, user=Depends(auth.get_current_user)):
    if not payload.items and payload.total_price is None:
        raise ValidationError("totalPrice is required when no items are given")

    reserved = []
    lines = []
    try:
        with database.transaction() as session:
            for line in payload.items:
                product = _get_product(line.product_id)
                unit_price = _line_price(product, line)
                inventory.reserve_stock(line.product_id, line.size, line.color, line.quantity, session=session)
                reserved.append(line)
                lines.append((line, unit_price))

            total = sum(price * line.quantity for line, price in lines) if lines else payload.total_price
            order = Order(buyer_id=str(user["_id"]), address=payload.address, total_price=total)
            order_id = database.create_document("order", order, session=session)
            for line, unit_price in lines:
                item = OrderItem(
                    order_id=order_id,
                    product_id=line.product_id,
                    size=line.size,
                    color=line.color,
                    quantity=line.quantity,
                    price=unit_price,
                )
                database.create_document("orderitem", item, session=session)
    except MarketplaceError:
        # Without a transaction the stock already taken has to be handed back
        if not config.MONGO_TRANSACTIONS:
            for line in reserved:
                inventory.release_stock(line.product_id, line.size, line.color, line.quantity)
        raise

    logger.info("Order %s created for buyer %s (total %s)", order_id, user["_id"], total)
    return _order_out(reconciliation.get_order(order_id), with_items=True)


@app.get("/api/orders")
def admin_list_orders(
    status: Optional[OrderStatus] = None,
    buyer_id: Optional[str] = Query(None, alias="buyerId"),
    admin=Depends(auth.get_current_admin),
):
    query = {}
    if status:
        query["status"] = OrderStatus(status).value
    if buyer_id:
        query["buyer_id"] = buyer_id
    return [_order_out(o) for o in database.get_documents("order", query)]


@app.get("/api/orders/buyer/{buyer_id}")
def list_buyer_orders(buyer_id: str, user=Depends(auth.get_current_user)):
    if user.get("role") != Role.admin.value and str(user["_id"]) != buyer_id:
        raise ForbiddenError("Not authorized to view these orders")
    return [_order_out(o) for o in database.get_documents("order", {"buyer_id": buyer_id})]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(auth.get_current_user)):
    order = reconciliation.get_order(order_id)
    _order_visible_to(order, user)
    return _order_out(order, with_items=True)


@app.patch("/api/orders/{order_id}/status")
def admin_change_order_status(order_id: str, payload: OrderStatusChange, admin=Depends(auth.get_current_admin)):
    order = reconciliation.set_order_status(order_id, payload.status, expected_version=payload.version)
    return _order_out(order)


@app.delete("/api/orders/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_order(order_id: str, admin=Depends(auth.get_current_admin)):
    order = reconciliation.get_order(order_id)
    if database.collection("payment").count_documents({"order_id": str(order["_id"])}):
        raise ConflictError("Order has payments and cannot be deleted", code="ORDER_HAS_PAYMENTS")
    database.collection("orderitem").delete_many({"order_id": str(order["_id"])})
    database.collection("order").delete_one({"_id": order["_id"]})
    logger.info("Order %s deleted by admin %s", order_id, admin["_id"])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Payments

@app.post("/api/payments", status_code=status.HTTP_201_CREATED)
async def process_payment(body: dict = Body(...)):
    payments.require_payment_fields(body)
    # pymongo is blocking; keep it off the event loop
    order = await run_in_threadpool(reconciliation.get_order, str(body["orderId"]))
    request = payments.parse_payment_request(body)
    payments.check_card_details(request)

    result, details = await payments.process_payment(request)
    payment = Payment(
        order_id=str(order["_id"]),
        amount=request.amount,
        currency=config.PAYMENT_CURRENCY,
        method=request.method,
        status=result.status if result.success else PaymentStatus.failed,
        transaction_id=result.transaction_id if result.success else None,
        payment_details=details,
    )
    payment_id, _ = await run_in_threadpool(reconciliation.record_payment, payment)
    saved = from_doc(PaymentOut, await run_in_threadpool(reconciliation.get_payment, payment_id))
    return {
        "success": True,
        "payment": {key: saved[key] for key in ("id", "orderId", "amount", "method", "status", "createdAt")},
    }


@app.get("/api/payments/order/{order_id}")
def get_payments_by_order(order_id: str):
    return [from_doc(PaymentOut, p) for p in database.get_documents("payment", {"order_id": order_id})]


@app.get("/api/payments/{payment_id}")
def get_payment(payment_id: str):
    return from_doc(PaymentOut, reconciliation.get_payment(payment_id))


# For admin/webhook callbacks
@app.patch("/api/payments/{payment_id}/status")
def update_payment_status(payment_id: str, payload: PaymentStatusChange):
    updated = reconciliation.update_payment_status(
        payment_id,
        payload.status,
        transaction_id=payload.transaction_id,
        expected_version=payload.version,
    )
    return {
        "success": True,
        "payment": {
            "id": str(updated["_id"]),
            "status": updated["status"],
            "transactionId": updated.get("transaction_id"),
        },
    }


@app.post("/api/payments/{payment_id}/verify")
async def verify_bank_transfer(
    payment_id: str,
    payload: payments.VerificationDetails,
    admin=Depends(auth.get_current_admin),
):
    payment, result = await reconciliation.confirm_bank_transfer(payment_id, payload)
    if not result.success:
        raise ValidationError(result.error, code="INCOMPLETE_VERIFICATION")
    return {
        "success": True,
        "verified": True,
        "verificationId": result.verification_id,
        "verifiedAt": result.verified_at,
        "payment": from_doc(PaymentOut, payment),
    }


@app.get("/api/payments/{payment_id}/receipt")
def get_receipt(payment_id: str):
    payment = reconciliation.get_payment(payment_id)
    return payments.generate_receipt(str(payment["_id"]))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
