"""Shiprocket integration: shipment registration and the status webhook."""

import logging
import threading
import time

import requests
from flask import Blueprint, current_app, jsonify, request

from db import get_db
from errors import Unauthorized
from models import COURIER_STATUS_MAP, Order, utcnow
from orders import record_tracking

logger = logging.getLogger(__name__)

TOKEN_TTL = 9 * 24 * 60 * 60  # tokens last 10 days, refresh a day early
REQUEST_TIMEOUT = 30


class ShippingError(Exception):
    """Raised when the shipping provider cannot be reached or refuses a call."""


class ShiprocketClient:
    def __init__(self, api_url, email, password):
        self.api_url = api_url.rstrip("/")
        self.email = email
        self.password = password
        self._token = None
        self._token_expiry = 0
        self._token_lock = threading.Lock()
        self.session = requests.Session()

    @classmethod
    def from_app(cls):
        client = current_app.extensions.get("shiprocket")
        if client is None:
            cfg = current_app.config
            client = cls(cfg["SHIPROCKET_API_URL"], cfg["SHIPROCKET_EMAIL"], cfg["SHIPROCKET_PASSWORD"])
            current_app.extensions["shiprocket"] = client
        return client

    def _auth_token(self):
        if not self.email or not self.password:
            raise ShippingError("Shiprocket credentials not configured")
        # one client serves every request thread; only one of them logs in
        with self._token_lock:
            if self._token and time.time() < self._token_expiry:
                return self._token
            try:
                resp = self.session.post(
                    f"{self.api_url}/auth/login",
                    json={"email": self.email, "password": self.password},
                    timeout=REQUEST_TIMEOUT,
                )
            except requests.RequestException as e:
                raise ShippingError(f"Shiprocket auth failed: {e}")
            if not resp.ok:
                raise ShippingError(f"Shiprocket auth failed: {resp.status_code} {resp.text}")
            self._token = resp.json()["token"]
            self._token_expiry = time.time() + TOKEN_TTL
            return self._token

    def _call(self, method, path, **kwargs):
        headers = {"Authorization": f"Bearer {self._auth_token()}"}
        try:
            resp = self.session.request(
                method, f"{self.api_url}{path}", headers=headers, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            raise ShippingError(f"Shiprocket request failed: {e}")
        if not resp.ok:
            raise ShippingError(f"Shiprocket {path} failed: {resp.status_code} {resp.text}")
        return resp.json()

    def create_order(self, payload):
        return self._call("POST", "/orders/create/adhoc", json=payload)

    def assign_awb(self, shipment_id):
        """Assign the first serviceable courier and generate the airway bill."""
        couriers = self._call(
            "GET", "/courier/serviceability", params={"shipment_id": shipment_id}
        )
        available = (couriers.get("data") or {}).get("available_courier_companies") or []
        if not available:
            raise ShippingError("No serviceable couriers found for this shipment")
        return self._call(
            "POST",
            "/courier/assign/awb",
            json={
                "shipment_id": shipment_id,
                "courier_id": available[0]["courier_company_id"],
            },
        )


def shipment_payload(order, user, pickup_location):
    address = order.address or {}
    full_name = (address.get("name") or user.name or "").strip()
    first, _, last = full_name.partition(" ")
    items = order.item_list
    return {
        "order_id": str(order.id),
        "order_date": order.created_at.strftime("%Y-%m-%d %H:%M"),
        "pickup_location": pickup_location,
        "billing_customer_name": first,
        "billing_last_name": last,
        "billing_address": address.get("address", ""),
        "billing_address_2": address.get("address2", ""),
        "billing_city": address.get("city", ""),
        "billing_pincode": str(address.get("zip") or address.get("pincode") or ""),
        "billing_state": address.get("state", ""),
        "billing_country": address.get("country") or "India",
        "billing_email": user.email,
        "billing_phone": address.get("phone", ""),
        "shipping_is_billing": True,
        "order_items": [
            {
                "name": item.get("name") or f"Product {item.get('productId')}",
                "sku": f"PRD-{item.get('productId')}",
                "units": item.get("quantity", 1),
                "selling_price": item.get("price", 0),
            }
            for item in items
        ],
        "payment_method": "Prepaid",
        "sub_total": order.total_amount,
        "length": 10,
        "breadth": 10,
        "height": 5,
        "weight": 0.5,
    }


def register_shipment(db, order, user):
    """Create the shipment and airway bill, then record them on the order.

    Raises ``ShippingError`` when the provider refuses; callers treat this as
    best-effort and only log.
    """
    client = ShiprocketClient.from_app()
    created = client.create_order(
        shipment_payload(order, user, current_app.config["SHIPROCKET_PICKUP_LOCATION"])
    )
    shipment_id = created.get("shipment_id")
    if not shipment_id:
        raise ShippingError(f"Shiprocket returned no shipment_id: {created}")
    order.shipping_order_id = str(created.get("order_id") or "") or None
    order.shipping_shipment_id = str(shipment_id)
    db.commit()

    awb = client.assign_awb(shipment_id)
    data = (awb.get("response") or {}).get("data") or {}
    awb_code = data.get("awb_code")
    if not awb_code:
        raise ShippingError(f"Shiprocket returned no awb_code: {awb}")
    order.tracking_id = awb_code
    order.courier_name = data.get("courier_name")
    order.tracking_url = f"https://shiprocket.co/tracking/{awb_code}"
    record_tracking(
        db, order, "Processing", "Shipment created and awaiting pickup", location="Warehouse"
    )
    db.commit()
    logger.info("Shipment %s registered for order %s (AWB %s)", shipment_id, order.id, awb_code)


shipping_bp = Blueprint("shipping", __name__, url_prefix="/api")


@shipping_bp.route("/shipping/webhook", methods=["POST"])
@shipping_bp.route("/shiprocket/webhook", methods=["POST"])
def shipping_webhook():
    expected = current_app.config.get("SHIPROCKET_WEBHOOK_TOKEN")
    if not expected or request.headers.get("x-api-key") != expected:
        raise Unauthorized("Unauthorized")

    data = request.get_json(silent=True) or {}
    external_id = data.get("order_id")
    phrase = (data.get("current_status") or data.get("status") or "").strip()
    if external_id is None or not phrase:
        return jsonify({"message": "Ignored: missing order_id or status"})

    db = get_db()
    order = db.query(Order).filter_by(shipping_order_id=str(external_id)).first()
    if order is None:
        logger.warning("Webhook received for unknown shipping order id %s", external_id)
        return jsonify({"message": "Order not found"})

    mapped = COURIER_STATUS_MAP.get(phrase.lower())
    if mapped is not None:
        order.status = mapped
    else:
        logger.info("Unmapped courier status %r for order %s, logged only", phrase, order.id)
    if data.get("awb") and not order.tracking_id:
        order.tracking_id = str(data["awb"])
    if data.get("courier_name"):
        order.courier_name = data["courier_name"]
    order.updated_at = utcnow()
    record_tracking(
        db,
        order,
        phrase,
        data.get("remarks") or f"Status updated to {phrase}",
        location=data.get("location") or None,
    )
    db.commit()
    return jsonify({"success": True, "status": order.status.value})
