"""
Database Schemas for the Organic Marketplace

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase
class name (e.g., Payment -> "payment"). Fields are stored snake_case and exposed to
API clients in camelCase. Money is always an integer amount of minor currency units.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True, validate_default=True)


class Role(str, Enum):
    admin = "admin"
    seller = "seller"
    buyer = "buyer"


class OrderStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class PaymentMethod(str, Enum):
    credit_card = "credit_card"
    paypal = "paypal"
    bank_transfer = "bank_transfer"
    cash_on_delivery = "cash_on_delivery"


class ProductType(str, Enum):
    simple = "Simple"
    variable = "Variable"


# Users

class User(CamelModel):
    name: str
    username: str = Field(..., min_length=3)
    email: str
    password_hash: str
    phone: str = ""
    address: str = ""
    role: Role = Role.buyer


class PasswordResetToken(CamelModel):
    token_hash: str
    user_id: str
    expires_at: datetime


class SellerStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class Seller(CamelModel):
    user_id: str
    personal_details: Dict[str, Any] = {}
    business_details: Dict[str, Any] = {}
    status: SellerStatus = SellerStatus.pending


# Catalog

class Category(CamelModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    image: str = ""
    created_by: str


class ProductVariant(CamelModel):
    size: str
    color: str = ""
    price: int = Field(ge=0)
    discount_price: Optional[int] = Field(default=None, ge=0)
    stock: int = Field(default=0, ge=0)
    unit: str = "Piece"


class NutritionalInfo(CamelModel):
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbohydrates: Optional[float] = None
    fat: Optional[float] = None
    fiber: Optional[float] = None
    vitamins: Optional[str] = None
    minerals: Optional[str] = None
    additional_info: Optional[str] = None


class Dimensions(CamelModel):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class ReturnPolicy(CamelModel):
    allowed: bool = False
    conditions: Optional[str] = None


class ShippingDetails(CamelModel):
    weight: Optional[float] = None
    dimensions: Dimensions = Field(default_factory=Dimensions)
    shipping_charges: Optional[int] = None  # None means free shipping
    delivery_time: Optional[str] = None
    return_policy: ReturnPolicy = Field(default_factory=ReturnPolicy)


class LegalCertifications(CamelModel):
    fssai_license: Optional[str] = None
    organic_certification: Optional[str] = None
    batch_number: Optional[str] = None
    manufacture_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None


class SeoDetails(CamelModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_keywords: List[str] = []


class Product(CamelModel):
    name: str
    category: str
    brand: Optional[str] = None
    sku: str
    product_type: ProductType = ProductType.simple
    tags: List[str] = []
    is_organic: bool = True
    variants: List[ProductVariant] = Field(..., min_length=1)
    main_image: str = ""
    additional_images: List[str] = []
    video: Optional[str] = None
    short_description: str = ""
    detailed_description: str = ""
    nutritional_info: Optional[NutritionalInfo] = None
    ingredients: Optional[str] = None
    shelf_life: Optional[str] = None
    shipping_details: ShippingDetails = Field(default_factory=ShippingDetails)
    legal_certifications: Optional[LegalCertifications] = None
    seo_details: SeoDetails = Field(default_factory=SeoDetails)
    seller_id: str


# Orders

class Order(CamelModel):
    buyer_id: str
    address: str
    total_price: int = Field(ge=0)
    status: OrderStatus = OrderStatus.pending
    version: int = 0


class OrderItem(CamelModel):
    order_id: str
    product_id: str
    size: str
    color: str = ""
    quantity: int = Field(ge=1)
    price: int = Field(ge=0)


# Payments

class Payment(CamelModel):
    order_id: str
    amount: int
    currency: str = "INR"
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.pending
    transaction_id: Optional[str] = None
    payment_details: Dict[str, Any] = {}
    version: int = 0


# API representations (stored document + id and timestamps)

class Stored(CamelModel):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserOut(Stored):
    name: str
    username: str
    email: str
    phone: str = ""
    address: str = ""
    role: Role


class CategoryOut(Stored, Category):
    pass


class SellerOut(Stored, Seller):
    pass


class ProductOut(Stored, Product):
    pass


class OrderOut(Stored, Order):
    pass


class OrderItemOut(Stored, OrderItem):
    pass


class PaymentOut(Stored, Payment):
    pass


def from_doc(model, doc: dict) -> dict:
    """Validate a raw Mongo document against ``model`` and dump it for the wire."""
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return model.model_validate(data).model_dump(by_alias=True, mode="json")
