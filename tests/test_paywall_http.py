"""
HTTP-level tests: PaywallMiddleware and /paywall routes on a FastAPI app
"""

import pytest
import httpx
from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from api.paywall.database import PaymentLogEntry
from api.paywall.middleware import PaywallMiddleware, render_paywall_page
from api.paywall.routes import router, limiter
from api.paywall.sessions import SESSION_HEADER, session_cookie_name
from conftest import BASE_USDC, PAYER, evm_payment, encode_header, settlement_body


@pytest.fixture
def app(settings, registry, resource_store, repository, orchestrator):
    app = FastAPI()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(PaywallMiddleware, settings=settings)
    app.include_router(router)

    app.state.settings = settings
    app.state.token_registry = registry
    app.state.resource_store = resource_store
    app.state.payment_repository = repository
    app.state.orchestrator = orchestrator

    @app.get("/articles/premium")
    async def premium():
        return {"content": "premium"}

    @app.get("/api/reports/latest")
    async def report():
        return {"report": "latest"}

    @app.get("/free")
    async def free():
        return {"content": "free"}

    return app


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as ac:
        yield ac


# =============================================================================
# MIDDLEWARE
# =============================================================================

@pytest.mark.asyncio
async def test_ungated_path_passes_through(client):
    response = await client.get("/free")
    assert response.status_code == 200
    assert response.json() == {"content": "free"}


@pytest.mark.asyncio
async def test_api_client_gets_402_json(client):
    response = await client.get("/api/reports/latest")

    assert response.status_code == 402
    body = response.json()
    assert body["x402Version"] == 1
    assert body["accepts"][0]["amount"] == "1000000"
    assert body["accepts"][0]["mimeType"] == "application/json"


@pytest.mark.asyncio
async def test_browser_gets_html_paywall(client):
    response = await client.get("/articles/premium", headers={"accept": "text/html"})

    assert response.status_code == 402
    assert response.headers["content-type"].startswith("text/html")
    assert "Premium article" in response.text
    assert "2.5 USDC" in response.text
    assert 'id="x402-requirements"' in response.text


@pytest.mark.asyncio
async def test_browser_payment_then_cookie_access(client, facilitator_stub):
    paid = await client.get(
        "/articles/premium",
        headers={"accept": "text/html", "X-PAYMENT": encode_header(evm_payment())},
    )

    assert paid.status_code == 303
    assert paid.headers["location"] == "/articles/premium"
    assert "X-PAYMENT-RESPONSE" in paid.headers
    set_cookie = paid.headers.get_list("set-cookie")
    session_cookie = next(c for c in set_cookie if c.startswith(session_cookie_name("42") + "="))
    assert "HttpOnly" in session_cookie
    assert "Secure" in session_cookie
    assert "samesite=strict" in session_cookie.lower()
    assert "Path=/articles/premium" in session_cookie

    calls = len(facilitator_stub.calls)
    again = await client.get("/articles/premium", headers={"accept": "text/html"})

    assert again.status_code == 200
    assert again.json() == {"content": "premium"}
    assert len(facilitator_stub.calls) == calls


@pytest.mark.asyncio
async def test_api_payment_then_header_access(client):
    paid = await client.get("/api/reports/latest", headers={"X-PAYMENT": encode_header(evm_payment())})

    assert paid.status_code == 200
    body = paid.json()
    assert body["success"] is True
    assert paid.headers[SESSION_HEADER] == body["session"]

    client.cookies.clear()
    again = await client.get("/api/reports/latest", headers={SESSION_HEADER: body["session"]})
    assert again.status_code == 200
    assert again.json() == {"report": "latest"}
    assert again.headers[SESSION_HEADER] == body["session"]


@pytest.mark.asyncio
async def test_api_failure_envelope(client, facilitator_stub):
    facilitator_stub.settle = (200, settlement_body(proof={"signature": "sig"}))

    response = await client.get("/api/reports/latest", headers={"X-PAYMENT": encode_header(evm_payment())})

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "proof_confirmation_failed"
    assert error["reference"].startswith("X402-")


@pytest.mark.asyncio
async def test_missing_orchestrator_fails_closed(app, client):
    app.state.orchestrator = None

    response = await client.get("/articles/premium")
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_disabled_paywall_passes_through(settings, resource_store):
    import dataclasses

    app = FastAPI()
    app.add_middleware(PaywallMiddleware, settings=dataclasses.replace(settings, enabled=False))
    app.state.resource_store = resource_store

    @app.get("/articles/premium")
    async def premium():
        return {"content": "premium"}

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="https://testserver") as ac:
        response = await ac.get("/articles/premium")
    assert response.status_code == 200


def test_paywall_page_escapes_notice():
    page = render_paywall_page({
        "title": "<b>Title</b>",
        "amount": "1",
        "network": "base-mainnet",
        "notice": {"message": "<script>x</script>", "reference": "X402-000007"},
        "accepts": [{"description": "</script><script>alert(1)</script>"}],
    })
    assert "<script>x</script>" not in page
    assert "&lt;b&gt;Title&lt;/b&gt;" in page
    assert "X402-000007" in page
    assert "</script><script>alert(1)" not in page


# =============================================================================
# ROUTES
# =============================================================================

@pytest.mark.asyncio
async def test_supported_tokens(client):
    response = await client.get("/paywall/supported-tokens")

    assert response.status_code == 200
    data = response.json()
    assert set(data["families"]) == {"evm", "svm"}
    assert BASE_USDC in data["networks"]["evm"]["base-mainnet"]["tokens"]


@pytest.mark.asyncio
async def test_requirements_preview(client):
    response = await client.get("/paywall/resources/42/requirements")

    assert response.status_code == 200
    data = response.json()
    assert data["amount_display"] == "2.5"
    assert data["accepts"][0]["resource"] == "https://testserver/articles/premium"


@pytest.mark.asyncio
async def test_unknown_resource_is_404(client):
    response = await client.get("/paywall/resources/missing/requirements")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_format_amount(client):
    response = await client.get("/paywall/format-amount", params={"atomic": "2500000", "decimals": 6})
    assert response.json()["display"] == "2.5"

    response = await client.get("/paywall/format-amount", params={"atomic": "-5"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_admin_routes_require_key(client):
    response = await client.get("/paywall/resources/42/logs")
    assert response.status_code == 403

    response = await client.get("/paywall/resources/42/logs", headers={"X-Admin-Key": "wrong"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_logs_and_paid_status(client, repository):
    await repository.log_payment(PaymentLogEntry(
        resource_id="42",
        amount="2500000",
        token_address=BASE_USDC,
        network="base-mainnet",
        payment_status="verified",
        user_address=PAYER,
        settlement_proof={"signature": "s", "payload": "p"},
    ))
    headers = {"X-Admin-Key": "test-admin-key"}

    logs = await client.get("/paywall/resources/42/logs", headers=headers)
    assert logs.status_code == 200
    assert logs.json()[0]["payment_status"] == "verified"

    paid = await client.get("/paywall/resources/42/paid", params={"address": PAYER}, headers=headers)
    assert paid.json()["paid"] is True

    unpaid = await client.get("/paywall/resources/42/paid", params={"address": "0x" + "00" * 20}, headers=headers)
    assert unpaid.json()["paid"] is False
