"""
Shared pytest fixtures for the x402 paywall
"""

import base64
import json
import os
import time

# Set testing environment before any api.* import builds the engine
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from api.database import Base
from api.paywall import models  # noqa: F401
from api.paywall.cache import CacheManager
from api.paywall.config import PaywallSettings
from api.paywall.database import PaymentLogRepository
from api.paywall.facilitator import FacilitatorClient
from api.paywall.notices import NoticeQueue
from api.paywall.orchestrator import PaymentOrchestrator
from api.paywall.resources import ResourceMetadata, StaticResourceStore
from api.paywall.sessions import SessionManager
from api.paywall.tokens import TokenRegistry

FACILITATOR_URL = "https://facilitator.test"
RECIPIENT = "0x" + "ab" * 20
PAYER = "0x" + "cd" * 20
TX_HASH = "0x" + "ef" * 32
BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


class InMemoryCache(CacheManager):
    """CacheManager backed by a dict; values round-trip through JSON like Redis"""

    def __init__(self, default_ttl: int = 1800):
        super().__init__(default_ttl=default_ttl)
        self.store = {}
        self.ttls = {}

    async def connect(self):
        pass

    async def disconnect(self):
        pass

    @property
    def connected(self) -> bool:
        return True

    def _live(self, key):
        expires = self.ttls.get(key)
        if expires is not None and expires <= time.time():
            self.store.pop(key, None)
            self.ttls.pop(key, None)
        return key in self.store

    async def get(self, key):
        return json.loads(self.store[key]) if self._live(key) else None

    async def set(self, key, value, ttl=None):
        ttl = ttl or self.default_ttl
        self.store[key] = json.dumps(value, default=str)
        self.ttls[key] = time.time() + ttl
        return True

    async def delete(self, key):
        self.store.pop(key, None)
        self.ttls.pop(key, None)
        return True

    async def pop(self, key):
        value = await self.get(key)
        await self.delete(key)
        return value

    async def get_stats(self):
        return {"status": "connected"}


class FacilitatorStub:
    """Scripted /verify and /settle responses served through httpx.MockTransport"""

    def __init__(self):
        self.verify = (200, {"isValid": True, "payer": PAYER})
        self.settle = (200, settlement_body())
        self.calls = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.url.path, json.loads(request.content)))
        status, body = self.verify if request.url.path.endswith("/verify") else self.settle
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body)


def settlement_body(**overrides):
    body = {
        "success": True,
        "transaction": TX_HASH,
        "network": "base-mainnet",
        "payer": PAYER,
        "proof": {
            "signature": "0xfacilitator-signature",
            "payload": {"transaction": TX_HASH, "amount": "2500000"},
            "reference": "settle-001",
        },
    }
    body.update(overrides)
    return body


def evm_payment(
    payer: str = PAYER,
    network: str = "base-mainnet",
    valid_before: int = None,
    signature: str = "0x" + "11" * 65,
    scheme: str = "exact"
) -> dict:
    if valid_before is None:
        valid_before = int(time.time()) + 600
    return {
        "x402Version": 1,
        "scheme": scheme,
        "network": network,
        "payload": {
            "signature": signature,
            "authorization": {
                "from": payer,
                "to": RECIPIENT,
                "value": "2500000",
                "validAfter": "0",
                "validBefore": str(valid_before),
                "nonce": "0x" + "22" * 32,
            },
        },
    }


def encode_header(payment: dict) -> str:
    return base64.b64encode(json.dumps(payment).encode("utf-8")).decode("utf-8")


@pytest.fixture
def settings():
    return PaywallSettings(
        enabled=True,
        facilitator_url=FACILITATOR_URL,
        facilitator_timeout=5.0,
        valid_before_buffer=6,
        enable_evm=True,
        enable_svm=True,
        session_secret="test-session-secret-with-at-least-32-chars",
        session_ttl=1800,
        notice_ttl=300,
        requirements_timeout=300,
        rest_prefix="/api/",
        admin_key="test-admin-key",
        resources_json=None,
        resources_file=None,
        redis_url="redis://localhost:6379/15",
        redis_password=None,
    )


@pytest.fixture
def registry():
    return TokenRegistry()


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def session_manager(cache, settings):
    return SessionManager(cache, settings.session_secret, ttl=settings.session_ttl)


@pytest.fixture
def notice_queue(cache, settings):
    return NoticeQueue(cache, ttl=settings.notice_ttl)


@pytest.fixture
async def session_factory():
    """Fresh in-memory SQLite database per test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_factory):
    return PaymentLogRepository(session_factory)


@pytest.fixture
def facilitator_stub():
    return FacilitatorStub()


@pytest.fixture
async def facilitator(facilitator_stub):
    client = FacilitatorClient(
        FACILITATOR_URL,
        timeout=5.0,
        client=httpx.AsyncClient(transport=httpx.MockTransport(facilitator_stub.handler)),
    )
    yield client
    await client.close()


@pytest.fixture
def article():
    return ResourceMetadata(
        resource_id="42",
        path="/articles/premium",
        title="Premium article",
        recipient_address=RECIPIENT,
        amount="2.50",
        amount_format="decimal",
        token_address=BASE_USDC,
        network="base-mainnet",
        token_decimals=6,
    )


@pytest.fixture
def report():
    return ResourceMetadata(
        resource_id="report-1",
        path="/api/reports/latest",
        title="Latest report",
        recipient_address=RECIPIENT,
        amount="1",
        amount_format="decimal",
        network="base-mainnet",
    )


@pytest.fixture
def resource_store(article, report):
    return StaticResourceStore([article, report])


@pytest.fixture
def orchestrator(settings, registry, facilitator, session_manager, notice_queue, repository):
    return PaymentOrchestrator(
        settings=settings,
        registry=registry,
        facilitator=facilitator,
        sessions=session_manager,
        notices=notice_queue,
        repository=repository,
    )
