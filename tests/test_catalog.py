import pytest

from models import ContactMessage, Service


class TestProducts:
    def test_list_filters(self, client, make_product):
        make_product(name="Amethyst Cluster", category="crystals", featured=True)
        make_product(name="Tarot Deck", category="decks", description="Classic deck")

        assert len(client.get("/api/products").get_json()) == 2
        crystals = client.get("/api/products?category=crystals").get_json()
        assert [p["name"] for p in crystals] == ["Amethyst Cluster"]
        featured = client.get("/api/products?featured=true").get_json()
        assert [p["name"] for p in featured] == ["Amethyst Cluster"]
        found = client.get("/api/products?search=classic").get_json()
        assert [p["name"] for p in found] == ["Tarot Deck"]

    def test_single_and_missing(self, client, make_product):
        product = make_product()
        assert client.get(f"/api/products?id={product.id}").get_json()["price"] == 500.0
        resp = client.get("/api/products?id=999")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "PRODUCT_NOT_FOUND"
        assert client.get("/api/products?id=abc").get_json()["code"] == "INVALID_ID"

    def test_writes_need_admin(self, client, customer):
        resp = client.post("/api/products", json={"name": "Sage", "price": 100})
        assert resp.status_code == 401

    def test_create_and_update(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={"name": "  Sage Bundle ", "price": 250, "stock": 4, "imageUrl": " "},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["name"] == "Sage Bundle"
        assert body["imageUrl"] is None
        assert body["stock"] == 4

        resp = client.put(
            f"/api/products?id={body['id']}", json={"price": 300}, headers=admin_headers
        )
        assert resp.get_json()["price"] == 300

    @pytest.mark.parametrize(
        "payload, code",
        [
            ({"name": "Sage", "price": 0}, "INVALID_PRICE"),
            ({"name": "Sage", "price": "10"}, "INVALID_PRICE"),
            ({"name": "Sage", "price": 10, "stock": -1}, "INVALID_STOCK"),
            ({"name": "Sage", "price": 10, "stock": 1.5}, "INVALID_STOCK"),
            ({"price": 10}, "MISSING_REQUIRED_FIELDS"),
        ],
    )
    def test_create_validation(self, client, admin_headers, payload, code):
        resp = client.post("/api/products", json=payload, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == code

    def test_delete(self, client, admin_headers, make_product):
        product = make_product()
        resp = client.delete(f"/api/products?id={product.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/products?id={product.id}").status_code == 404


class TestServicesAndContact:
    def test_only_active_services(self, client, db):
        db.add_all(
            [
                Service(heading="Reading", price=1000, category="Book Consultation"),
                Service(heading="Retired", price=500, is_active=False),
            ]
        )
        db.commit()
        body = client.get("/api/services").get_json()
        assert [s["heading"] for s in body] == ["Reading"]
        healing = client.get("/api/services", query_string={"category": "Book Healing"})
        assert healing.get_json() == []

    def test_contact_message_stored_unread(self, client, db):
        resp = client.post(
            "/api/contact",
            json={"name": " Asha ", "email": "Asha@Example.com", "message": "Hello"},
        )
        assert resp.status_code == 201
        row = db.query(ContactMessage).one()
        assert (row.user_name, row.user_email, row.status) == ("Asha", "asha@example.com", "unread")

    def test_contact_requires_valid_email(self, client):
        resp = client.post(
            "/api/contact", json={"name": "Asha", "email": "not-an-email", "message": "Hi"}
        )
        assert resp.get_json()["code"] == "INVALID_EMAIL"
