from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from auth import admin_required
from db import get_db
from errors import (
    BadRequest,
    NotFound,
    clean_str,
    page_args,
    require_fields,
    require_int,
    valid_email,
)
from models import ContactMessage, Course, Product, Service, utcnow

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")

PRODUCT_FIELDS = {
    "name": "name",
    "description": "description",
    "price": "price",
    "category": "category",
    "imageUrl": "image_url",
    "stock": "stock",
    "featured": "featured",
    "originalPrice": "original_price",
    "benefits": "benefits",
    "isActive": "is_active",
}
TEXT_FIELDS = ("description", "category", "image_url", "benefits")


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_product(data):
    price = data.get("price")
    if price is not None and (not _is_number(price) or price <= 0):
        raise BadRequest("Price must be greater than 0", "INVALID_PRICE")
    stock = data.get("stock")
    if stock is not None and (not isinstance(stock, int) or isinstance(stock, bool) or stock < 0):
        raise BadRequest("Stock must be a non-negative integer", "INVALID_STOCK")
    original = data.get("originalPrice")
    if original is not None and (not _is_number(original) or original < 0):
        raise BadRequest("Original price must be a non-negative number", "INVALID_PRICE")


def apply_product_fields(product, data):
    for key, attr in PRODUCT_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if attr == "name":
            value = clean_str(value)
        elif attr in TEXT_FIELDS:
            value = clean_str(value) or None
        setattr(product, attr, value)


def _get_product(db, product_id):
    product = db.get(Product, product_id)
    if product is None:
        raise NotFound("Product not found", "PRODUCT_NOT_FOUND")
    return product


@catalog_bp.route("/products", methods=["GET"])
def list_products():
    db = get_db()
    if request.args.get("id") is not None:
        return jsonify(_get_product(db, require_int(request.args.get("id"))).to_dict())

    limit, offset = page_args(request.args)
    query = db.query(Product)
    search = request.args.get("search")
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Product.name.like(pattern), Product.description.like(pattern)))
    if request.args.get("category"):
        query = query.filter(Product.category == request.args["category"])
    if request.args.get("featured") is not None:
        query = query.filter(Product.featured.is_(request.args["featured"] == "true"))
    rows = query.order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).offset(offset)
    return jsonify([p.to_dict() for p in rows])


@catalog_bp.route("/products", methods=["POST"])
@admin_required
def create_product():
    data = request.get_json(silent=True) or {}
    if not clean_str(data.get("name")):
        raise BadRequest("Name is required", "MISSING_REQUIRED_FIELDS")
    if data.get("price") is None:
        raise BadRequest("Price is required", "MISSING_REQUIRED_FIELDS")
    validate_product(data)

    product = Product(stock=0, featured=False, is_active=True)
    apply_product_fields(product, data)
    if product.stock is None:
        product.stock = 0
    db = get_db()
    db.add(product)
    db.commit()
    return jsonify(product.to_dict()), 201


@catalog_bp.route("/products", methods=["PUT"])
@admin_required
def update_product():
    db = get_db()
    product = _get_product(db, require_int(request.args.get("id")))
    data = request.get_json(silent=True) or {}
    validate_product(data)
    if "name" in data and not clean_str(data["name"]):
        raise BadRequest("Name cannot be empty", "MISSING_REQUIRED_FIELDS")
    if "price" in data and data["price"] is None:
        raise BadRequest("Price must be greater than 0", "INVALID_PRICE")
    if "stock" in data and data["stock"] is None:
        raise BadRequest("Stock must be a non-negative integer", "INVALID_STOCK")

    apply_product_fields(product, data)
    product.updated_at = utcnow()
    db.commit()
    return jsonify(product.to_dict())


@catalog_bp.route("/products", methods=["DELETE"])
@admin_required
def delete_product():
    db = get_db()
    product = _get_product(db, require_int(request.args.get("id")))
    deleted = product.to_dict()
    db.delete(product)
    db.commit()
    return jsonify({"message": "Product deleted successfully", "product": deleted})


@catalog_bp.route("/services", methods=["GET"])
def list_services():
    query = get_db().query(Service).filter(Service.is_active.is_(True))
    if request.args.get("category"):
        query = query.filter(Service.category == request.args["category"])
    return jsonify([s.to_dict() for s in query.order_by(Service.created_at.desc())])


@catalog_bp.route("/courses", methods=["GET"])
def list_courses():
    query = get_db().query(Course).filter(Course.is_active.is_(True))
    return jsonify([c.to_dict() for c in query.order_by(Course.created_at.desc())])


@catalog_bp.route("/contact", methods=["POST"])
def contact():
    data = request.get_json(silent=True) or {}
    require_fields(data, "name", "email", "message")
    name, email, message = (clean_str(data[k]) for k in ("name", "email", "message"))
    if not name or not email or not message:
        raise BadRequest("Name, email, and message cannot be empty", "INVALID_INPUT")
    if not valid_email(email):
        raise BadRequest("Invalid email format", "INVALID_EMAIL")

    row = ContactMessage(user_name=name, user_email=email.lower(), message=message, status="unread")
    db = get_db()
    db.add(row)
    db.commit()
    return jsonify(row.to_dict()), 201
