from __future__ import annotations


def _assert_error_shape(res, *, error: str | None = None):
    data = res.json()
    assert isinstance(data, dict)
    assert isinstance(data.get("error"), str) and data["error"]
    assert isinstance(data.get("message"), str) and data["message"]
    if error is not None:
        assert data["error"] == error


def test_error_shape_401_missing_token(anonymous_client):
    res = anonymous_client.get("/api/user/subscription")
    assert res.status_code == 401
    _assert_error_shape(res, error="UNAUTHORIZED")


def test_error_shape_404_no_customer(client):
    res = client.post("/api/payments/create-portal-session")
    assert res.status_code == 404
    _assert_error_shape(res, error="NOT_FOUND")


def test_error_shape_400_body_validation(client):
    res = client.post("/api/payments/create-checkout-session", json={"userId": "user_a"})
    assert res.status_code == 400
    _assert_error_shape(res, error="VALIDATION_ERROR")
    body = res.json()
    assert isinstance(body.get("details"), dict)
    assert isinstance(body["details"].get("errors"), list)


def test_error_shape_422_query_validation(client):
    res = client.get("/api/errors/report", params={"limit": "lots"})
    assert res.status_code == 422
    _assert_error_shape(res, error="VALIDATION_ERROR")
    assert isinstance(res.json()["details"]["errors"], list)


def test_error_shape_429_rate_limited(client):
    for _ in range(10):
        client.post("/api/payments/create-checkout-session", json={"userId": "user_a", "priceId": "price_1"})
    res = client.post("/api/payments/create-checkout-session", json={"userId": "user_a", "priceId": "price_1"})
    assert res.status_code == 429
    _assert_error_shape(res, error="RATE_LIMITED")
    assert res.json()["details"]["limit"] == 10


def test_health(anonymous_client):
    res = anonymous_client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
