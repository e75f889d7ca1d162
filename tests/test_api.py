"""End-to-end API tests against the app with an in-memory store and a stubbed accrual calculator."""

import gzip

import pytest
from httpx import ASGITransport, AsyncClient

from bonusmart.core.luhn import is_valid_order_number

pytestmark = pytest.mark.asyncio

JSON = {"Content-Type": "application/json"}
TEXT = {"Content-Type": "text/plain"}


async def register(client, login="user111", password="secret"):
    r = await client.post("/api/user/register", json={"login": login, "password": password})
    assert r.status_code == 200, r.text
    return r


async def upload(client, number, headers=TEXT):
    return await client.post("/api/user/orders", content=number, headers=headers)


async def test_register_sets_session_cookies(client):
    r = await register(client)
    assert set(r.cookies) == {"username", "user_id"}
    assert r.cookies["username"] == "user111"
    data, _, sign = r.cookies["user_id"].partition(":")
    assert len(data) == 32
    assert len(sign) == 64


async def test_register_twice_conflicts(client):
    await register(client)
    r = await client.post("/api/user/register", json={"login": "user111", "password": "other"})
    assert r.status_code == 409


@pytest.mark.parametrize(
    "content,headers",
    [
        ('{"login": "a", "password": "b"}', TEXT),
        ("{not json", JSON),
        ('{"login": "", "password": "b"}', JSON),
        ('{"login": "a"}', JSON),
        ('{"login": 1, "password": "b"}', JSON),
    ],
)
async def test_register_bad_requests(client, content, headers):
    r = await client.post("/api/user/register", content=content, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "BAD_REQUEST"


async def test_login(client):
    await register(client)
    client.cookies.clear()
    r = await client.post("/api/user/login", json={"login": "user111", "password": "secret"})
    assert r.status_code == 200
    assert r.cookies["username"] == "user111"
    assert (await client.get("/api/user/balance")).status_code == 200


@pytest.mark.parametrize("login,password", [("user111", "wrong"), ("nobody", "secret")])
async def test_login_wrong_credentials(client, login, password):
    await register(client)
    r = await client.post("/api/user/login", json={"login": login, "password": password})
    assert r.status_code == 401


@pytest.mark.parametrize(
    "method,path",
    [
        ("POST", "/api/user/orders"),
        ("GET", "/api/user/orders"),
        ("GET", "/api/user/balance"),
        ("POST", "/api/user/balance/withdraw"),
        ("GET", "/api/user/balance/withdraw"),
    ],
)
async def test_protected_routes_require_session(client, method, path):
    # checked before the body or content type
    r = await client.request(method, path, content="123455", headers=TEXT)
    assert r.status_code == 401


async def test_forged_cookie_is_rejected(client):
    await register(client)
    client.cookies.clear()
    client.cookies.set("username", "user111")
    client.cookies.set("user_id", "00000000000000000000000000000000:" + "0" * 64)
    assert (await client.get("/api/user/balance")).status_code == 401


async def test_session_is_bound_to_client_ip(app, client):
    r = await register(client)
    cookies = {"username": r.cookies["username"], "user_id": r.cookies["user_id"]}
    async with AsyncClient(
        transport=ASGITransport(app=app, client=("10.0.0.2", 4242)),
        base_url="http://test",
        cookies=cookies,
    ) as other:
        assert (await other.get("/api/user/balance")).status_code == 401
    assert (await client.get("/api/user/balance")).status_code == 200


async def test_order_upload_and_accrual(app, client, accrual_stub):
    accrual_stub.script("123455", accrual_stub.upstream("123455", "PROCESSING"), accrual_stub.processed("123455", 500))
    await register(client)

    r = await upload(client, "123455")
    assert r.status_code == 202
    assert r.text == "Order accepted"
    await app.state.worker.join()

    r = await client.get("/api/user/orders")
    assert r.status_code == 200
    (order,) = r.json()
    assert order["number"] == "123455"
    assert order["status"] == "PROCESSED"
    assert order["accrual"] == 500
    assert "uploaded_at" in order

    r = await client.get("/api/user/balance")
    assert r.json() == {"current": 500, "withdrawn": 0}


async def test_invalid_order_has_no_accrual_field(app, client, accrual_stub):
    accrual_stub.script("123455", accrual_stub.upstream("123455", "INVALID"))
    await register(client)
    assert (await upload(client, "123455")).status_code == 202
    await app.state.worker.join()
    (order,) = (await client.get("/api/user/orders")).json()
    assert order["status"] == "INVALID"
    assert "accrual" not in order


async def test_pending_order_is_listed_as_new(client, accrual_stub):
    accrual_stub.script("123455", accrual_stub.upstream("123455", "REGISTERED"))
    await register(client)
    assert (await upload(client, "123455")).status_code == 202
    (order,) = (await client.get("/api/user/orders")).json()
    assert order["status"] in ("NEW", "PROCESSING")
    assert "accrual" not in order


async def test_order_upload_repeats_and_conflicts(app, client):
    await register(client)
    assert (await upload(client, "123455")).status_code == 202
    r = await upload(client, "123455\n")
    assert r.status_code == 200
    assert r.text == "Order already uploaded"

    client.cookies.clear()
    await register(client, login="user222")
    assert (await upload(client, "123455")).status_code == 409
    await app.state.worker.join()


@pytest.mark.parametrize("number", ["1234.5", "123456", "abcd", ""])
async def test_order_upload_rejects_bad_numbers(client, number):
    await register(client)
    assert (await upload(client, number)).status_code == 422


async def test_order_upload_requires_text_plain(client):
    await register(client)
    assert (await upload(client, "123455", headers=JSON)).status_code == 400


async def test_empty_lists_are_no_content(client):
    await register(client)
    assert (await client.get("/api/user/orders")).status_code == 204
    assert (await client.get("/api/user/balance/withdraw")).status_code == 204
    assert (await client.get("/api/user/balance")).json() == {"current": 0, "withdrawn": 0}


async def _funded(app, client, accrual_stub, amount=500):
    accrual_stub.script("123455", accrual_stub.processed("123455", amount))
    await register(client)
    assert (await upload(client, "123455")).status_code == 202
    await app.state.worker.join()


async def test_withdraw(app, client, accrual_stub):
    await _funded(app, client, accrual_stub)

    r = await client.post("/api/user/balance/withdraw", json={"order": "84410807816", "sum": 1})
    assert r.status_code == 200
    assert r.json() == {"order": "84410807816", "sum": 1}

    assert (await client.get("/api/user/balance")).json() == {"current": 499, "withdrawn": 1}

    r = await client.get("/api/user/balance/withdraw")
    assert r.status_code == 200
    (item,) = r.json()
    assert item["order"] == "84410807816"
    assert item["sum"] == 1
    assert "processed_at" in item


async def test_withdraw_insufficient_funds(app, client, accrual_stub):
    await _funded(app, client, accrual_stub)
    r = await client.post("/api/user/balance/withdraw", json={"order": "84410807816", "sum": 1000})
    assert r.status_code == 402
    assert (await client.get("/api/user/balance")).json() == {"current": 500, "withdrawn": 0}
    assert (await client.get("/api/user/balance/withdraw")).status_code == 204


@pytest.mark.parametrize(
    "body,expected",
    [
        ({"order": "1234.5", "sum": 1}, 422),
        ({"order": "84410807816", "sum": 0}, 400),
        ({"order": "84410807816", "sum": -3}, 400),
        ({"order": "84410807816"}, 400),
        ({"sum": 1}, 400),
    ],
)
async def test_withdraw_rejections(app, client, accrual_stub, body, expected):
    await _funded(app, client, accrual_stub)
    r = await client.post("/api/user/balance/withdraw", json=body)
    assert r.status_code == expected
    assert (await client.get("/api/user/balance")).json() == {"current": 500, "withdrawn": 0}


async def test_withdraw_against_order_of_other_user(app, client, accrual_stub):
    await _funded(app, client, accrual_stub)
    r = await client.post("/api/user/balance/withdraw", json={"order": "123455", "sum": 1})
    assert r.status_code == 200

    user111 = dict(client.cookies)
    client.cookies.clear()
    accrual_stub.script("84410807816", accrual_stub.processed("84410807816", 50))
    await register(client, login="user222")
    assert (await upload(client, "84410807816")).status_code == 202
    await app.state.worker.join()

    client.cookies.clear()
    client.cookies.update(user111)
    r = await client.post("/api/user/balance/withdraw", json={"order": "84410807816", "sum": 1})
    assert r.status_code == 422
    assert (await client.get("/api/user/balance")).json() == {"current": 499, "withdrawn": 1}


async def test_withdraw_exact_balance_in_steps(app, client, accrual_stub):
    await _funded(app, client, accrual_stub, amount=0.3)
    for number, amount in (("84410807816", 0.1), ("12345678903", 0.2)):
        r = await client.post("/api/user/balance/withdraw", json={"order": number, "sum": amount})
        assert r.status_code == 200, r.text
    assert (await client.get("/api/user/balance")).json() == {"current": 0, "withdrawn": 0.3}

    r = await client.post("/api/user/balance/withdraw", json={"order": "84410807816", "sum": 0.01})
    assert r.status_code == 402


async def test_withdrawn_order_shows_in_orders(app, client, accrual_stub):
    await _funded(app, client, accrual_stub)
    await client.post("/api/user/balance/withdraw", json={"order": "84410807816", "sum": 10})
    orders = {o["number"]: o for o in (await client.get("/api/user/orders")).json()}
    assert orders["84410807816"]["status"] == "PROCESSED"
    assert orders["84410807816"]["accrual"] == 0


async def test_gzip_request_body(client):
    body = gzip.compress(b'{"login": "gz", "password": "secret"}')
    r = await client.post(
        "/api/user/register",
        content=body,
        headers={"Content-Type": "application/json", "Content-Encoding": "gzip"},
    )
    assert r.status_code == 200
    assert r.cookies["username"] == "gz"


async def test_bad_gzip_body(client):
    r = await client.post(
        "/api/user/register",
        content=b"definitely not gzip",
        headers={"Content-Type": "application/json", "Content-Encoding": "gzip"},
    )
    assert r.status_code == 400


@pytest.mark.parametrize(
    "body",
    [
        # inflates past the default 1 MiB request limit
        gzip.compress(b'{"login": "gz", "password": "' + b"x" * 2_000_000 + b'"}'),
        gzip.compress(b'{"login": "gz", "password": "secret"}')[:-8],
    ],
    ids=["oversized", "truncated"],
)
async def test_gzip_body_rejected(client, body):
    r = await client.post(
        "/api/user/register",
        content=body,
        headers={"Content-Type": "application/json", "Content-Encoding": "gzip"},
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "BAD_REQUEST"


async def test_gzip_response(app, client, accrual_stub):
    await register(client)
    for i in range(60):
        number = _luhn_number(1000 + i)
        accrual_stub.script(number, accrual_stub.upstream(number, "REGISTERED"))
        assert (await upload(client, number)).status_code == 202
    r = await client.get("/api/user/orders", headers={"Accept-Encoding": "gzip"})
    assert r.status_code == 200
    assert r.headers["content-encoding"] == "gzip"
    assert len(r.json()) == 60


@pytest.mark.parametrize(
    "method,path",
    [("GET", "/"), ("PUT", "/"), ("GET", "/api/user/unknown"), ("PUT", "/api/user/register"), ("DELETE", "/api/user/orders")],
)
async def test_unknown_routes_are_bad_requests(client, method, path):
    r = await client.request(method, path)
    assert r.status_code == 400


async def test_request_id_header(client):
    r = await client.get("/api/user/balance", headers={"X-Request-ID": "req-1"})
    assert r.headers["X-Request-ID"] == "req-1"


def _luhn_number(prefix: int) -> str:
    digits = str(prefix)
    for check in "0123456789":
        if is_valid_order_number(digits + check):
            return digits + check
    raise AssertionError("unreachable")
