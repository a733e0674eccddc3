"""Redis sliding-window rate limiting."""
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import auth_headers
from storefront.rate_limiter import RedisRateLimiter


def limited_client(redis_client, **limits):
    limited_app = FastAPI()
    limited_app.add_middleware(RedisRateLimiter, **limits)
    if redis_client is not None:
        limited_app.state.redis_client = redis_client

    @limited_app.get("/ping")
    async def ping():
        return {"ok": True}

    return TestClient(limited_app)


def test_health_is_not_limited_without_redis(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_no_redis_client_allows_requests():
    client = limited_client(None, requests_per_minute_ip=1)

    assert [client.get("/ping").status_code for _ in range(3)] == [200, 200, 200]


def test_ip_limit_returns_429(fake_redis):
    client = limited_client(fake_redis, requests_per_minute_ip=2)

    statuses = [client.get("/ping").status_code for _ in range(3)]

    assert statuses == [200, 200, 429]


def test_forwarded_address_is_limited_separately(fake_redis):
    client = limited_client(fake_redis, requests_per_minute_ip=1)

    assert client.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
    assert client.get("/ping", headers={"X-Forwarded-For": "10.0.0.2, 10.0.0.9"}).status_code == 200
    assert client.get("/ping", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
    assert "rate:ip:10.0.0.2" in fake_redis.sorted_sets


def test_user_limit_carries_retry_after(fake_redis):
    client = limited_client(fake_redis, requests_per_minute_user=1)
    headers = auth_headers("u1")

    client.get("/ping", headers=headers)
    response = client.get("/ping", headers=headers)

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert "user" in response.json()["detail"]
    assert "rate:user:u1" in fake_redis.sorted_sets


def test_fails_open_when_redis_is_down(fake_redis):
    fake_redis.fail = True
    client = limited_client(fake_redis, requests_per_minute_ip=1)

    assert [client.get("/ping").status_code for _ in range(2)] == [200, 200]


def test_sliding_window_counts_requests(fake_redis):
    limiter = RedisRateLimiter(app=None)

    results = [limiter._check_rate_limit(fake_redis, "rate:ip:1.2.3.4", 2, 60) for _ in range(3)]

    assert [allowed for allowed, _ in results] == [True, True, False]
    assert results[-1][1] == 3
