# storefront/models.py
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Boolean,
    Text,
    UniqueConstraint,
    Enum as SAEnum,
)
from sqlalchemy.orm import relationship

from storefront.database import Base


def _uuid() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, name, default=None, nullable=False):
    # Persist the lower-case values ("confirmed"), not the member names
    return Column(
        SAEnum(
            enum_cls,
            name=name,
            native_enum=False,
            validate_strings=True,
            values_callable=lambda members: [member.value for member in members],
        ),
        default=default,
        nullable=nullable,
    )


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMode(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    UPI = "upi"
    COD = "cod"
    NET_BANKING = "net_banking"
    WALLET = "wallet"
    SANDBOX = "sandbox"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"
    REFUNDED = "refunded"


class NotificationType(str, Enum):
    ORDER_PLACED = "order_placed"
    ORDER_UPDATE = "order_update"
    CART_ABANDONMENT = "cart_abandonment"
    PROMOTION = "promotion"
    GENERAL = "general"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class Profile(Base):
    __tablename__ = 'profiles'
    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255))
    avatar_url = Column(String(512))
    role = Column(String(50), default=Role.CUSTOMER.value, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    orders = relationship("Order", back_populates="user")
    cart_items = relationship("CartItem", back_populates="user", cascade="all, delete-orphan")
    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_admin(self) -> bool:
        return (self.role or '').lower() == Role.ADMIN.value

    @property
    def display_name(self) -> str:
        return self.full_name or 'Customer'


class Product(Base):
    __tablename__ = 'products'
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2))
    category = Column(String(100), nullable=False, index=True)
    subcategory = Column(String(100))
    images = Column(JSON, default=list)
    video_url = Column(String(512))
    rating = Column(Numeric(3, 2), default=0, nullable=False)
    review_count = Column(Integer, default=0, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    tags = Column(JSON, default=list)
    featured = Column(Boolean, default=False, nullable=False)
    bestseller = Column(Boolean, default=False, nullable=False)
    sizes = Column(JSON, default=list)
    colors = Column(JSON, default=list)
    deal_of_the_day = Column(Boolean, default=False, nullable=False)
    deal_expires_at = Column(DateTime)
    attributes = Column(JSON, default=dict)
    created_at = Column(DateTime, default=_utcnow, index=True)

    reviews = relationship("Review", back_populates="product", cascade="all, delete-orphan")
    media = relationship("ProductMedia", back_populates="product", cascade="all, delete-orphan")

    @property
    def unit_price(self) -> float:
        return float(self.price or 0)

    def apply_rating(self, ratings) -> None:
        """Recompute the cached rating average from the given review ratings."""
        values = [r for r in ratings if r]
        self.review_count = len(values)
        self.rating = round(sum(values) / len(values), 2) if values else 0


class ProductMedia(Base):
    __tablename__ = 'product_media'
    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False, index=True)
    type = _enum_column(MediaType, "media_type", default=MediaType.IMAGE)
    url = Column(String(512), nullable=False)
    path = Column(String(512), nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    product = relationship("Product", back_populates="media")


class Review(Base):
    __tablename__ = 'reviews'
    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey('profiles.id'))
    user_name = Column(String(255))
    rating = Column(Integer)
    comment = Column(Text)
    created_at = Column(DateTime, default=_utcnow)

    product = relationship("Product", back_populates="reviews")


class CartItem(Base):
    __tablename__ = 'cart_items'
    __table_args__ = (
        UniqueConstraint('user_id', 'product_id', 'selected_size', 'selected_color', name='uq_cart_line'),
    )
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('profiles.id'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    selected_size = Column(String(50), default='', nullable=False)
    selected_color = Column(String(50), default='', nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    user = relationship("Profile", back_populates="cart_items")
    product = relationship("Product")

    @property
    def line_total(self) -> float:
        return self.product.unit_price * self.quantity if self.product else 0.0


class SavedItem(Base):
    __tablename__ = 'saved_items'
    __table_args__ = (UniqueConstraint('user_id', 'product_id', name='uq_saved_item'),)
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('profiles.id'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    product = relationship("Product")


class WishlistItem(Base):
    __tablename__ = 'wishlist'
    __table_args__ = (UniqueConstraint('user_id', 'product_id', name='uq_wishlist_item'),)
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('profiles.id'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    product = relationship("Product")


class BrowsingHistory(Base):
    __tablename__ = 'browsing_history'
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('profiles.id'), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey('products.id'), nullable=False)
    viewed_at = Column(DateTime, default=_utcnow, nullable=False)

    product = relationship("Product")


class Address(Base):
    __tablename__ = 'addresses'
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('profiles.id'), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    address_line1 = Column(String(255), nullable=False)
    address_line2 = Column(String(255))
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    pincode = Column(String(12), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)

    user = relationship("Profile", back_populates="addresses")

    def to_snapshot(self) -> dict:
        """Shape stored on the order row, frozen at purchase time."""
        return {
            "id": self.id,
            "fullName": self.full_name,
            "phone": self.phone,
            "addressLine1": self.address_line1,
            "addressLine2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "isDefault": self.is_default,
        }


class Order(Base):
    __tablename__ = 'orders'
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('profiles.id'), index=True)
    status = _enum_column(OrderStatus, "order_status", default=OrderStatus.CONFIRMED)
    subtotal = Column(Numeric(10, 2), default=0, nullable=False)
    shipping = Column(Numeric(10, 2), default=0, nullable=False)
    tax = Column(Numeric(10, 2), default=0, nullable=False)
    handling_fee = Column(Numeric(10, 2), default=0, nullable=False)
    discount = Column(Numeric(10, 2), default=0, nullable=False)
    coupon_code = Column(String(50))
    total = Column(Numeric(10, 2), default=0, nullable=False)
    shipping_address = Column(JSON)
    payment_method = Column(String(32))
    payment_details = Column(JSON)
    estimated_delivery = Column(DateTime)
    tracking_steps = Column(JSON)
    created_at = Column(DateTime, default=_utcnow, index=True)

    user = relationship("Profile", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="order")

    @property
    def short_id(self) -> str:
        return (self.id or '')[:8]


class OrderItem(Base):
    __tablename__ = 'order_items'
    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey('orders.id'), index=True)
    product_id = Column(String(36), ForeignKey('products.id'))
    quantity = Column(Integer, nullable=False)
    price_at_purchase = Column(Numeric(10, 2), nullable=False)
    selected_size = Column(String(50), default='N/A')
    selected_color = Column(String(50), default='N/A')

    order = relationship("Order", back_populates="items")
    product = relationship("Product")

    @property
    def line_total(self) -> float:
        return float(self.price_at_purchase) * self.quantity


class Transaction(Base):
    __tablename__ = 'transactions'
    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey('orders.id'), index=True)
    user_id = Column(String(36), ForeignKey('profiles.id'), index=True)
    payment_mode = Column(String(32))
    amount = Column(Numeric(10, 2), nullable=False)
    status = _enum_column(TransactionStatus, "transaction_status", default=TransactionStatus.PENDING)
    transaction_ref = Column(String(120))
    timestamp = Column(DateTime, default=_utcnow, index=True)
    receipt_url = Column(String(512))

    order = relationship("Order", back_populates="transactions")


class Notification(Base):
    __tablename__ = 'notifications'
    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey('profiles.id'), index=True)
    type = _enum_column(NotificationType, "notification_type", default=NotificationType.GENERAL)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    data = Column(JSON)
    created_at = Column(DateTime, default=_utcnow, index=True)


class Coupon(Base):
    __tablename__ = 'coupons'
    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(50), unique=True, nullable=False)
    discount_type = _enum_column(DiscountType, "discount_type", default=DiscountType.PERCENTAGE)
    discount_value = Column(Numeric(10, 2), nullable=False)
    min_purchase_amount = Column(Numeric(10, 2), default=0)
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    usage_limit = Column(Integer)
    used_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_utcnow)


class SiteSetting(Base):
    __tablename__ = 'site_settings'
    id = Column(String(36), primary_key=True, default=_uuid)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(JSON, nullable=False)
    description = Column(String(255))
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
