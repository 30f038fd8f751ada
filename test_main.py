"""
test_main.py
============
API tests for the coupon service.

Covers:
- Creating coupons and the validation / conflict responses
- Listing coupons (all, by codes, partial results)
- Applying coupons: full discount, burn-through, single-use, error cases
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import main
from coupon_engine import RedemptionService
from main import build_app, create_app, schedule_shutdown, serve
from config import Settings
from schemas import Coupon
from store import InMemoryCouponStore


@pytest.fixture
def store():
    return InMemoryCouponStore()


@pytest.fixture
def client(store):
    app = create_app(RedemptionService(store))
    with TestClient(app) as c:
        yield c


# ══════════════════════════════════════════════
#  Helper functions
# ══════════════════════════════════════════════

def create_coupon(client, code="SAVE20", discount=20, min_basket_value=50):
    return client.post("/api/create", json={
        "code": code,
        "discount": discount,
        "min_basket_value": min_basket_value,
    })


def apply_coupon(client, code="SAVE20", value=100, applied_discount=0):
    return client.post("/api/apply", json={
        "code": code,
        "basket": {"value": value, "applied_discount": applied_discount},
    })


# ══════════════════════════════════════════════
#  Create Tests
# ══════════════════════════════════════════════

class TestCreateCoupon:

    def test_create_coupon(self, client):
        resp = create_coupon(client)
        assert resp.status_code == 201
        body = resp.json()
        assert body["code"] == "SAVE20"
        assert body["discount"] == 20
        assert body["min_basket_value"] == 50
        assert body["id"]

    def test_created_coupon_can_be_fetched(self, client):
        created = create_coupon(client).json()
        resp = client.get("/api/coupons/SAVE20")
        assert resp.status_code == 200
        assert resp.json() == created

    def test_zero_discount_rejected(self, client):
        resp = create_coupon(client, discount=0)
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation"

    def test_negative_min_basket_rejected(self, client):
        resp = create_coupon(client, discount=10, min_basket_value=-1)
        assert resp.status_code == 400

    def test_discount_above_minimum_rejected(self, client):
        resp = create_coupon(client, discount=60, min_basket_value=50)
        assert resp.status_code == 400
        assert "higher" in resp.json()["detail"]

    def test_empty_code_rejected(self, client):
        resp = create_coupon(client, code="")
        assert resp.status_code == 400

    def test_duplicate_code_conflict(self, client):
        original = create_coupon(client).json()
        resp = create_coupon(client, discount=5, min_basket_value=10)
        assert resp.status_code == 409
        assert resp.json()["error"] == "conflict"
        # The first coupon's terms are untouched
        assert client.get("/api/coupons/SAVE20").json() == original

    def test_malformed_body(self, client):
        resp = client.post("/api/create", json={"code": "X", "discount": "lots"})
        assert resp.status_code == 422


# ══════════════════════════════════════════════
#  List Tests
# ══════════════════════════════════════════════

class TestListCoupons:

    def test_list_all(self, client):
        create_coupon(client, code="A")
        create_coupon(client, code="B")
        resp = client.get("/api/coupons")
        assert resp.status_code == 200
        codes = sorted(c["code"] for c in resp.json()["coupons"])
        assert codes == ["A", "B"]

    def test_list_by_codes(self, client):
        create_coupon(client, code="A")
        create_coupon(client, code="B")
        resp = client.get("/api/coupons", params={"codes": "B"})
        assert [c["code"] for c in resp.json()["coupons"]] == ["B"]

    def test_list_skips_unknown_codes(self, client):
        create_coupon(client, code="A")
        resp = client.get("/api/coupons", params={"codes": "A,NOPE"})
        assert resp.status_code == 200
        assert [c["code"] for c in resp.json()["coupons"]] == ["A"]

    def test_list_blank_codes_is_empty(self, client):
        create_coupon(client, code="A")
        resp = client.get("/api/coupons", params={"codes": " , "})
        assert resp.status_code == 200
        assert resp.json()["coupons"] == []

    def test_get_unknown_coupon(self, client):
        resp = client.get("/api/coupons/NOPE")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"


# ══════════════════════════════════════════════
#  Apply Coupon Tests
# ══════════════════════════════════════════════

class TestApplyCoupon:

    def test_apply_full_discount(self, client):
        create_coupon(client, discount=20, min_basket_value=50)
        resp = apply_coupon(client, value=100)
        assert resp.status_code == 200
        assert resp.json() == {
            "value": 80,
            "applied_discount": 20,
            "application_successful": True,
        }

    def test_apply_accumulates_discount(self, client):
        create_coupon(client, discount=20, min_basket_value=50)
        resp = apply_coupon(client, value=100, applied_discount=5)
        assert resp.json()["applied_discount"] == 25

    def test_apply_burn_through(self, client, store):
        # min_basket_value=0 with a positive discount cannot be created through
        # the service, so the coupon is placed in the store directly
        store.save(Coupon(id="x", code="BIG", discount=20, min_basket_value=0))
        resp = apply_coupon(client, code="BIG", value=15)
        assert resp.status_code == 200
        assert resp.json()["value"] == 0
        assert resp.json()["applied_discount"] == 15

    def test_coupon_is_single_use(self, client):
        create_coupon(client)
        assert apply_coupon(client).status_code == 200
        assert client.get("/api/coupons/SAVE20").status_code == 404
        assert apply_coupon(client).status_code == 404

    def test_apply_unknown_coupon(self, client):
        resp = apply_coupon(client, code="NOPE")
        assert resp.status_code == 404

    def test_apply_below_minimum(self, client):
        create_coupon(client, discount=20, min_basket_value=50)
        resp = apply_coupon(client, value=30)
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"] == "domain_rule"
        assert body["required"] == 50
        assert body["actual"] == 30
        # Failed redemption keeps the coupon
        assert client.get("/api/coupons/SAVE20").status_code == 200

    def test_apply_empty_basket(self, client):
        create_coupon(client, discount=20, min_basket_value=50)
        resp = apply_coupon(client, value=0)
        assert resp.status_code == 422
        assert "non-positive" in resp.json()["detail"]

    def test_apply_missing_basket(self, client):
        resp = client.post("/api/apply", json={"code": "SAVE20"})
        assert resp.status_code == 422


# ══════════════════════════════════════════════
#  App wiring
# ══════════════════════════════════════════════

class TestBuildApp:

    def test_health(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_json_backend_survives_restart(self, tmp_path):
        settings = Settings(store="json", data_file=str(tmp_path / "coupons.json"))
        with TestClient(build_app(settings)) as first:
            assert create_coupon(first).status_code == 201

        with TestClient(build_app(settings)) as second:
            resp = second.get("/api/coupons/SAVE20")
            assert resp.status_code == 200
            assert resp.json()["discount"] == 20

    def test_sql_backend_survives_restart(self, tmp_path):
        settings = Settings(store="sql", database_url=f"sqlite:///{tmp_path / 'coupons.db'}")
        with TestClient(build_app(settings)) as first:
            create_coupon(first, code="A")
            create_coupon(first, code="B")
            assert apply_coupon(first, code="A").status_code == 200

        with TestClient(build_app(settings)) as second:
            codes = [c["code"] for c in second.get("/api/coupons").json()["coupons"]]
            assert codes == ["B"]


# ══════════════════════════════════════════════
#  Serving
# ══════════════════════════════════════════════

class FakeServer:
    def __init__(self, config=None):
        self.config = config
        self.should_exit = False
        self.ran = False

    def run(self):
        self.ran = True


class TestServe:

    def test_shutdown_after_time_alive(self):
        server = FakeServer()
        timer = schedule_shutdown(server, timedelta(milliseconds=10))
        timer.join(timeout=5)
        assert server.should_exit is True

    def test_cancelled_shutdown_leaves_server_running(self):
        server = FakeServer()
        timer = schedule_shutdown(server, timedelta(hours=1))
        timer.cancel()
        timer.join(timeout=5)
        assert server.should_exit is False

    def test_serve_passes_shutdown_timeout(self, monkeypatch):
        servers = []

        def make_server(config):
            server = FakeServer(config)
            servers.append(server)
            return server

        monkeypatch.setattr(main.uvicorn, "Server", make_server)
        serve(Settings(port=9999, time_alive="1h", shutdown_timeout="5s"))

        assert len(servers) == 1
        assert servers[0].ran
        assert servers[0].config.port == 9999
        assert servers[0].config.timeout_graceful_shutdown == 5
