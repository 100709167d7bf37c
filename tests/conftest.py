import math
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from carebook.api.server import create_app
from carebook.cache.cache_service import CacheService
from carebook.config import Settings
from carebook.db import make_engine

API = "/api/v1"
PASSWORD = "correct-horse-9"


class FakeRedis:
    """In-process stand-in for redis.asyncio.Redis with a manual clock."""

    def __init__(self):
        self.store = {}
        self.expires_at = {}
        self.now = 0.0
        self.down = False
        self.closed = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self):
        if self.down:
            raise ConnectionError("redis is down")

    def _alive(self, key) -> bool:
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= self.now:
            self.store.pop(key, None)
            self.expires_at.pop(key, None)
        return key in self.store

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.store[key] if self._alive(key) else None

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        if ex:
            self.expires_at[key] = self.now + ex
        else:
            self.expires_at.pop(key, None)
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self._alive(key):
                del self.store[key]
                self.expires_at.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys):
        self._check()
        return sum(1 for key in keys if self._alive(key))

    async def expire(self, key, seconds):
        self._check()
        if not self._alive(key):
            return False
        self.expires_at[key] = self.now + seconds
        return True

    async def ttl(self, key):
        self._check()
        if not self._alive(key):
            return -2
        if key not in self.expires_at:
            return -1
        return math.ceil(self.expires_at[key] - self.now)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def settings():
    return Settings(
        app_env="test",
        database_url="sqlite://",
        allow_admin_signup=True,
        obs_on=False,
    )


@pytest.fixture
def cache(settings, fake_redis):
    return CacheService.from_settings(settings, client=fake_redis)


@pytest.fixture
def client(settings, cache):
    app = create_app(settings=settings, engine=make_engine(settings), cache=cache)
    with TestClient(app) as c:
        yield c


def _sign_up(client, email, role="customer", name=None):
    r = client.post(
        f"{API}/auth/sign-up",
        json={"name": name or email.split("@")[0], "email": email, "password": PASSWORD, "role": role},
    )
    assert r.status_code == 201, r.text
    return r.json()["data"]["user"]


def _sign_in(client, email, password=PASSWORD):
    r = client.post(f"{API}/auth/sign-in", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    # keep identities explicit per request instead of riding the cookie jar
    client.cookies.clear()
    return {"Authorization": f"Bearer {r.json()['data']['token']}"}


@pytest.fixture
def register(client):
    """Sign a user up and in; returns (user, auth headers)."""

    def _register(email, role="customer"):
        user = _sign_up(client, email, role)
        return user, _sign_in(client, email)

    return _register


@pytest.fixture
def marketplace(client, register):
    """An approved supplier with one live home, one room type and three priced nights."""
    admin, admin_h = register("admin@carebook.test", "admin")
    supplier_user, supplier_h = register("owner@sunrise.test", "supplier")
    customer, customer_h = register("daughter@family.test", "customer")

    supplier = client.post(
        f"{API}/suppliers", json={"legal_name": "Sunrise Care Co."}, headers=supplier_h
    ).json()["data"]
    client.patch(
        f"{API}/admin/suppliers/{supplier['id']}/qc", json={"qc_status": "approved"}, headers=admin_h
    )
    home = client.post(
        f"{API}/nursing-homes",
        json={
            "name": "Sunrise Garden",
            "address": "12 Nimman Rd",
            "city": "Chiang Mai",
            "province": "Chiang Mai",
        },
        headers=supplier_h,
    ).json()["data"]
    client.patch(
        f"{API}/nursing-homes/{home['id']}/status", json={"status": "live"}, headers=supplier_h
    )
    room_type = client.post(
        f"{API}/nursing-homes/{home['id']}/room-types",
        json={"name": "Private suite", "capacity": 2},
        headers=supplier_h,
    ).json()["data"]
    plan = client.post(
        f"{API}/room-types/{room_type['id']}/rate-plans",
        json={"name": "Full board", "pricing_model": "per_night"},
        headers=supplier_h,
    ).json()["data"]
    r = client.put(
        f"{API}/rate-plans/{plan['id']}/calendar",
        json={
            "days": [
                {"day": "2030-01-01", "price": "1200.00", "available": 1},
                {"day": "2030-01-02", "price": "1200.00", "available": 1},
                {"day": "2030-01-03", "price": "1500.00", "available": 1},
            ]
        },
        headers=supplier_h,
    )
    assert r.status_code == 200, r.text

    return SimpleNamespace(
        admin=admin,
        admin_h=admin_h,
        supplier_user=supplier_user,
        supplier_h=supplier_h,
        customer=customer,
        customer_h=customer_h,
        supplier=supplier,
        home=home,
        room_type=room_type,
        plan=plan,
    )


@pytest.fixture
def booking_request(marketplace):
    def _request(check_in="2030-01-01", check_out="2030-01-03", guests=2, **item):
        return {
            "nursing_home_id": marketplace.home["id"],
            "check_in": check_in,
            "check_out": check_out,
            "guests": guests,
            "items": [
                {
                    "room_type_id": marketplace.room_type["id"],
                    "rate_plan_id": marketplace.plan["id"],
                    **item,
                }
            ],
        }

    return _request
