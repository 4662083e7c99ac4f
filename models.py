import enum
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    # naive UTC; SQLite drops tzinfo on the way back anyway
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id():
    return uuid.uuid4().hex


def _iso(value):
    return value.isoformat() if value is not None else None


def _loads(text, default):
    if not text:
        return default
    try:
        return json.loads(text)
    except ValueError:
        return default


class OrderStatus(enum.Enum):
    """Order lifecycle. API responses carry the uppercase value, e.g. ``"PAID"``."""

    PENDING = "PENDING"
    PAID = "PAID"
    PLACED = "PLACED"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @classmethod
    def parse(cls, value):
        """Case-insensitive lookup; returns None for anything unknown."""
        if not isinstance(value, str):
            return None
        try:
            return cls[value.strip().upper()]
        except KeyError:
            return None


# Statuses an admin may set through the back office
ADMIN_STATUSES = (
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
)

# Orders counted as revenue
REVENUE_STATUSES = (
    OrderStatus.PAID,
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)

# Courier phrases reported by the shipping provider
COURIER_STATUS_MAP = {
    "order packed": OrderStatus.PROCESSING,
    "pickup scheduled": OrderStatus.PROCESSING,
    "pickup generated": OrderStatus.PROCESSING,
    "shipped": OrderStatus.SHIPPED,
    "dispatched": OrderStatus.SHIPPED,
    "picked up": OrderStatus.SHIPPED,
    "in transit": OrderStatus.SHIPPED,
    "out for delivery": OrderStatus.SHIPPED,
    "delivered": OrderStatus.DELIVERED,
    "canceled": OrderStatus.CANCELLED,
    "cancelled": OrderStatus.CANCELLED,
    "rto initiated": OrderStatus.CANCELLED,
}


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class User(TimestampMixin, Base):
    __tablename__ = "user"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, nullable=False)
    email_verified = Column(Boolean, default=False)
    name = Column(String, nullable=False)
    image = Column(String)
    password_hash = Column(String)
    role = Column(String, nullable=False, default="user")

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "emailVerified": bool(self.email_verified),
            "name": self.name,
            "image": self.image,
            "role": self.role,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class UserSession(TimestampMixin, Base):
    __tablename__ = "session"

    id = Column(String, primary_key=True, default=new_id)
    token = Column(String, unique=True, nullable=False)
    user_id = Column(String, ForeignKey("user.id"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    ip_address = Column(String)
    user_agent = Column(String)


class Verification(TimestampMixin, Base):
    __tablename__ = "verification"

    id = Column(String, primary_key=True, default=new_id)
    identifier = Column(String, nullable=False)  # email
    value = Column(String, unique=True, nullable=False)  # token
    purpose = Column(String, nullable=False)  # email-verification | password-reset
    expires_at = Column(DateTime, nullable=False)


class Admin(TimestampMixin, Base):
    __tablename__ = "admin"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, nullable=False)
    email_verified = Column(Boolean, default=False)
    name = Column(String, nullable=False)
    image = Column(String)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "emailVerified": bool(self.email_verified),
            "image": self.image,
        }


class AdminAccount(TimestampMixin, Base):
    __tablename__ = "admin_account"

    id = Column(String, primary_key=True, default=new_id)
    account_id = Column(String, nullable=False, unique=True)  # normalized email
    provider_id = Column(String, nullable=False, default="credential")
    admin_id = Column(String, ForeignKey("admin.id"), nullable=False)
    password_hash = Column(String)


class AdminSession(TimestampMixin, Base):
    __tablename__ = "admin_session"

    id = Column(String, primary_key=True, default=new_id)
    token = Column(String, unique=True, nullable=False)
    admin_id = Column(String, ForeignKey("admin.id"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    ip_address = Column(String)
    user_agent = Column(String)


class Product(TimestampMixin, Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    price = Column(Float, nullable=False)
    category = Column(String)
    image_url = Column(String)
    stock = Column(Integer, default=0, nullable=False)
    featured = Column(Boolean, default=False)
    original_price = Column(Float)
    benefits = Column(Text)
    is_active = Column(Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "imageUrl": self.image_url,
            "stock": self.stock,
            "featured": bool(self.featured),
            "originalPrice": self.original_price,
            "benefits": self.benefits,
            "isActive": bool(self.is_active),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Service(TimestampMixin, Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    heading = Column(String, nullable=False)
    subheading = Column(String)
    description = Column(Text)
    price = Column(Float, nullable=False, default=0)
    category = Column(String)  # Book Consultation, Book Healing, Advance Services
    is_active = Column(Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "heading": self.heading,
            "subheading": self.subheading,
            "description": self.description,
            "price": self.price,
            "category": self.category,
            "isActive": bool(self.is_active),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Course(TimestampMixin, Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True)
    heading = Column(String, nullable=False)
    subheading = Column(String)
    description = Column(Text)
    price = Column(Float, nullable=False, default=0)
    pdf_url = Column(String)
    is_active = Column(Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "heading": self.heading,
            "subheading": self.subheading,
            "description": self.description,
            "price": self.price,
            "pdfUrl": self.pdf_url,
            "isActive": bool(self.is_active),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class ServiceSlot(TimestampMixin, Base):
    __tablename__ = "service_slots"

    id = Column(Integer, primary_key=True)
    service_id = Column(Integer, ForeignKey("services.id"))  # None means any service
    date = Column(String, nullable=False)  # YYYY-MM-DD
    time = Column(String, nullable=False)  # "9:00 AM"
    is_available = Column(Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "serviceId": self.service_id,
            "date": self.date,
            "time": self.time,
            "available": bool(self.is_available),
        }


class CartItem(TimestampMixin, Base):
    __tablename__ = "cart"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_cart_quantity_positive"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("user.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    product = relationship("Product")

    def to_dict(self):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "productId": self.product_id,
            "quantity": self.quantity,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if self.product is not None:
            data["product"] = {
                "id": self.product.id,
                "name": self.product.name,
                "price": self.product.price,
                "imageUrl": self.product.image_url,
                "stock": self.product.stock,
            }
        return data


class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("user.id"), nullable=False)
    items = Column(Text)  # JSON snapshot
    total_amount = Column(Float)
    status = Column(
        Enum(OrderStatus, native_enum=False, length=20, validate_strings=True),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    payment_intent_id = Column(String, unique=True)
    gateway_order_id = Column(String)
    shipping_address = Column(Text)  # JSON snapshot
    shipping_order_id = Column(String)
    shipping_shipment_id = Column(String)
    tracking_id = Column(String)
    courier_name = Column(String)
    tracking_url = Column(String)

    user = relationship("User")

    @property
    def item_list(self):
        return _loads(self.items, [])

    @property
    def address(self):
        return _loads(self.shipping_address, None)

    def to_dict(self, with_user=False):
        data = {
            "id": self.id,
            "userId": self.user_id,
            "items": self.item_list,
            "totalAmount": self.total_amount,
            "status": self.status.value if self.status else None,
            "paymentIntentId": self.payment_intent_id,
            "gatewayOrderId": self.gateway_order_id,
            "shippingAddress": self.address,
            "shippingOrderId": self.shipping_order_id,
            "shippingShipmentId": self.shipping_shipment_id,
            "trackingId": self.tracking_id,
            "courierName": self.courier_name,
            "trackingUrl": self.tracking_url,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if with_user:
            data["user"] = (
                {
                    "id": self.user.id,
                    "email": self.user.email,
                    "name": self.user.name,
                    "role": self.user.role,
                }
                if self.user is not None
                else None
            )
        return data


class OrderTracking(TimestampMixin, Base):
    __tablename__ = "order_tracking"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    status = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    location = Column(String)

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "status": self.status,
            "description": self.description,
            "location": self.location,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class ServiceBooking(TimestampMixin, Base):
    __tablename__ = "service_bookings"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("user.id"))
    service_id = Column(Integer, ForeignKey("services.id"))
    session_type = Column(String)
    client_name = Column(String, nullable=False)
    client_email = Column(String, nullable=False)
    client_phone = Column(String)
    date = Column(String, nullable=False)
    time_slot = Column(String, nullable=False)
    duration = Column(Integer)
    notes = Column(Text)
    status = Column(String, nullable=False, default="pending")
    payment_id = Column(String, unique=True)
    razorpay_order_id = Column(String)
    amount = Column(Float)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "serviceId": self.service_id,
            "sessionType": self.session_type,
            "clientName": self.client_name,
            "clientEmail": self.client_email,
            "clientPhone": self.client_phone,
            "date": self.date,
            "timeSlot": self.time_slot,
            "duration": self.duration,
            "notes": self.notes,
            "status": self.status,
            "paymentId": self.payment_id,
            "razorpayOrderId": self.razorpay_order_id,
            "amount": self.amount,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class CourseEnrollment(TimestampMixin, Base):
    __tablename__ = "course_enrollments"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, ForeignKey("user.id"))
    course_id = Column(Integer, ForeignKey("courses.id"))
    course_name = Column(String)  # kept if the course is later deleted
    client_name = Column(String, nullable=False)
    client_email = Column(String, nullable=False)
    client_phone = Column(String)
    delivery_type = Column(String, nullable=False)  # one-to-one | recorded
    status = Column(String, nullable=False, default="pending")
    payment_id = Column(String, unique=True)
    razorpay_order_id = Column(String)
    amount = Column(Float)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "courseId": self.course_id,
            "courseName": self.course_name,
            "clientName": self.client_name,
            "clientEmail": self.client_email,
            "clientPhone": self.client_phone,
            "deliveryType": self.delivery_type,
            "status": self.status,
            "paymentId": self.payment_id,
            "razorpayOrderId": self.razorpay_order_id,
            "amount": self.amount,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class ContactMessage(TimestampMixin, Base):
    __tablename__ = "contact_messages"

    id = Column(Integer, primary_key=True)
    user_name = Column(String, nullable=False)
    user_email = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="unread")  # unread, read, replied

    def to_dict(self):
        return {
            "id": self.id,
            "userName": self.user_name,
            "userEmail": self.user_email,
            "message": self.message,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
