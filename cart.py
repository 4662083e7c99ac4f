from flask import Blueprint, g, jsonify, request

from auth import login_required
from db import get_db
from errors import (
    BadRequest,
    Forbidden,
    NotFound,
    page_args,
    parse_quantity,
    require_int,
)
from models import CartItem, Product, utcnow

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def check_stock(product, quantity):
    # read at mutation time only, nothing is reserved
    available = product.stock or 0
    if quantity > available:
        raise BadRequest(f"Only {available} items available in stock", "INSUFFICIENT_STOCK")


def get_owned_item(db, item_id):
    item = db.get(CartItem, item_id)
    if item is None:
        raise NotFound("Cart item not found", "CART_ITEM_NOT_FOUND")
    if not g.principal.can_access(item.user_id):
        raise Forbidden("Access denied")
    return item


@cart_bp.route("", methods=["GET"])
@login_required
def get_cart():
    db = get_db()
    if request.args.get("id") is not None:
        item = get_owned_item(db, require_int(request.args.get("id")))
        return jsonify(item.to_dict())

    limit, offset = page_args(request.args, default_limit=100)
    query = db.query(CartItem)
    if not g.principal.is_admin or request.args.get("mine", "true") == "true":
        query = query.filter(CartItem.user_id == g.principal.subject_id)
    rows = query.order_by(CartItem.id).limit(limit).offset(offset).all()
    return jsonify([row.to_dict() for row in rows])


@cart_bp.route("", methods=["POST"])
@login_required
def add_to_cart():
    data = request.get_json(silent=True) or {}
    if data.get("productId") in (None, ""):
        raise BadRequest("productId is required", "MISSING_REQUIRED_FIELDS")
    product_id = require_int(data["productId"], "INVALID_PRODUCT_ID", "Valid product ID is required")
    quantity = parse_quantity(data["quantity"]) if data.get("quantity") is not None else 1

    db = get_db()
    product = db.get(Product, product_id)
    if product is None:
        raise NotFound("Product not found", "PRODUCT_NOT_FOUND")

    existing = (
        db.query(CartItem)
        .filter_by(user_id=g.principal.subject_id, product_id=product_id)
        .first()
    )
    if existing is not None:
        check_stock(product, existing.quantity + quantity)
        existing.quantity += quantity
        existing.updated_at = utcnow()
        db.commit()
        return jsonify(existing.to_dict()), 200

    check_stock(product, quantity)
    item = CartItem(user_id=g.principal.subject_id, product_id=product_id, quantity=quantity)
    db.add(item)
    db.commit()
    return jsonify(item.to_dict()), 201


@cart_bp.route("", methods=["PUT"])
@login_required
def update_cart_item():
    db = get_db()
    item = get_owned_item(db, require_int(request.args.get("id")))
    data = request.get_json(silent=True) or {}

    if data.get("quantity") is not None:
        quantity = parse_quantity(data["quantity"])
        product = db.get(Product, item.product_id)
        if product is None:
            raise NotFound("Product not found", "PRODUCT_NOT_FOUND")
        check_stock(product, quantity)
        item.quantity = quantity
    item.updated_at = utcnow()
    db.commit()
    return jsonify(item.to_dict())


@cart_bp.route("", methods=["DELETE"])
@login_required
def remove_cart_item():
    db = get_db()
    if request.args.get("all") == "true":
        count = db.query(CartItem).filter_by(user_id=g.principal.subject_id).delete()
        db.commit()
        return jsonify({"message": "Cart cleared", "count": count})

    item = get_owned_item(db, require_int(request.args.get("id")))
    item_id = item.id
    db.delete(item)
    db.commit()
    return jsonify({"message": "Cart item removed successfully", "id": item_id})
