import threading
import time

import pytest

from shipping import ShippingError, ShiprocketClient


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = str(payload)

    def json(self):
        return self.payload


class FakeSession:
    """Records logins; each login is slow so concurrent callers overlap."""

    def __init__(self):
        self.logins = 0
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.logins += 1
        time.sleep(0.05)
        return FakeResponse({"token": f"tok{self.logins}"})

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        self.calls.append(headers["Authorization"])
        return FakeResponse({"shipment_id": 1})


@pytest.fixture
def shiprocket():
    client = ShiprocketClient("https://shiprocket.test/v1/", "ops@example.com", "secret")
    client.session = FakeSession()
    return client


class TestShiprocketClient:
    def test_concurrent_requests_log_in_once(self, shiprocket):
        threads = [
            threading.Thread(target=shiprocket.create_order, args=({},)) for _ in range(5)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert shiprocket.session.logins == 1
        assert shiprocket.session.calls == ["Bearer tok1"] * 5

    def test_expired_token_is_refreshed(self, shiprocket):
        shiprocket.create_order({})
        shiprocket._token_expiry = 0
        shiprocket.create_order({})
        assert shiprocket.session.logins == 2

    def test_missing_credentials(self):
        client = ShiprocketClient("https://shiprocket.test/v1", None, None)
        with pytest.raises(ShippingError):
            client.create_order({})
