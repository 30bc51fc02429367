import base64
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from kyc_service.db.models import Base
from kyc_service.services.documents import DocumentCustodian
from kyc_service.services.encryption import PURPOSE_DOCUMENTS, PURPOSE_PERSONAL_DATA, EnvelopeProtector
from kyc_service.services.orchestrator import VerificationOrchestrator
from kyc_service.services.providers.onfido import OnfidoAdapter
from kyc_service.services.providers.router import ProviderRouter
from kyc_service.services.sessions import SessionManager
from kyc_service.services.storage import LocalDocumentStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
TEST_MASTER_KEY = "test-master-key-for-kyc-service"
ONFIDO_API_URL = "https://api.onfido.test/v3.6/"
ONFIDO_SDK_URL = "https://id.onfido.test/start"
ONFIDO_WEBHOOK_TOKEN = "onfido-webhook-token"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def send(self, user_id: str, message: str) -> None:
        self.sent.append((user_id, message))


class FakeVendorApi:
    """httpx.MockTransport handler keyed by the last path segment."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def set(self, endpoint: str, body=None, status: int = 200) -> None:
        self.routes[endpoint] = (status, body if body is not None else {})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rstrip("/").rsplit("/", 1)[-1]
        status, body = self.routes.get(endpoint, (404, {"error": "not found"}))
        return httpx.Response(status, json=body)

    def calls(self, endpoint: str) -> list:
        return [r for r in self.requests if r.url.path.rstrip("/").endswith(endpoint)]


def image_data_url(size: int = 2000, marker: bytes = b"\xff\xd8\xff") -> str:
    return "data:image/jpeg;base64," + base64.b64encode(marker + b"\x10" * size).decode("ascii")


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest_asyncio.fixture
async def db(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'kyc.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def document_protector():
    return EnvelopeProtector(PURPOSE_DOCUMENTS, TEST_MASTER_KEY)


@pytest.fixture
def personal_protector():
    return EnvelopeProtector(PURPOSE_PERSONAL_DATA, TEST_MASTER_KEY)


@pytest.fixture
def store(tmp_path):
    return LocalDocumentStore(tmp_path / "blobs")


@pytest.fixture
def custodian(store, document_protector, clock):
    return DocumentCustodian(store=store, protector=document_protector, clock=clock)


@pytest.fixture
def onfido_api():
    api = FakeVendorApi()
    api.set("applicants", {"id": "applicant-1"})
    api.set("sdk_token", {"token": "sdk-token-1"})
    api.set("checks", {"results": {"watchlist_standard": {"result": "clear", "tags": []}}})
    return api


@pytest.fixture
def onfido(onfido_api, clock):
    return OnfidoAdapter(
        api_url=ONFIDO_API_URL,
        api_key="onfido-test-key",
        sdk_url=ONFIDO_SDK_URL,
        webhook_token=ONFIDO_WEBHOOK_TOKEN,
        transport=httpx.MockTransport(onfido_api),
        clock=clock,
    )


@pytest.fixture
def orchestrator(onfido, clock, notifier, personal_protector):
    return VerificationOrchestrator(
        ProviderRouter([onfido], default="onfido", mode="default"),
        sessions=SessionManager(timeout_hours=24, clock=clock),
        notifier=notifier,
        protector=personal_protector,
        clock=clock,
        validity_days=365,
    )
