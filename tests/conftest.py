"""
ZYNAXIA Session - Pytest Configuration
Fixtures partagées pour tous les tests.
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt
import pytest
import pytest_asyncio

from src.identity import (
    IIdentityService,
    LoginCredentials,
    LoginResponse,
    RefreshRejectedError,
    TokenPair,
    User,
)
from src.logging import LogConfig, LogLevel, StructuredLogger
from src.session import ACCESS_TOKEN_KEY, SessionMonitor, SessionOrchestrator
from src.storage import InMemoryKeyValueBackend, SecureStore


SIGNING_SECRET = "test-signing-secret-with-at-least-32-bytes!"
EPOCH = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

DEFAULT_USER: Dict[str, Any] = {
    "_id": "user-1",
    "email": "jane@faith.example.com",
    "firstName": "Jane",
    "lastName": "Doe",
    "role": {"slug": "admin", "name": "Administrator"},
    "merchant": {"subdomain": "faith"},
}


class FakeClock:
    """Horloge UTC contrôlée par le test."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def mint_token(exp: Optional[datetime], **claims: Any) -> str:
    """Jeton HS256 signé; exp=None produit un jeton sans claim exp."""
    payload: Dict[str, Any] = {"sub": "user-1", "jti": uuid.uuid4().hex}
    if exp is not None:
        payload["exp"] = int(exp.timestamp())
    payload.update(claims)
    return jwt.encode(payload, SIGNING_SECRET, algorithm="HS256")


class FakeIdentityService(IIdentityService):
    """
    Service d'identité en mémoire.

    Chaque refresh consomme le jeton présenté (un second usage est refusé).
    Les attributs *_error injectent une exception; *_gate suspend l'appel
    jusqu'à ce que l'Event soit levé.
    """

    def __init__(self, clock: FakeClock, access_ttl: timedelta = timedelta(minutes=15)) -> None:
        self.clock = clock
        self.access_ttl = access_ttl
        self.user: Dict[str, Any] = dict(DEFAULT_USER)
        self.requires_onboarding = False

        self.login_error: Optional[Exception] = None
        self.me_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.login_gate: Optional[asyncio.Event] = None
        self.refresh_gate: Optional[asyncio.Event] = None
        self.me_gate: Optional[asyncio.Event] = None

        self.login_calls: List[LoginCredentials] = []
        self.me_calls: List[str] = []
        self.refresh_calls: List[str] = []
        self.logout_calls: List[Optional[str]] = []
        self.issued: List[TokenPair] = []
        self._consumed: set = set()

    def issue(self, ttl: Optional[timedelta] = None) -> TokenPair:
        expiry = self.clock() + (ttl if ttl is not None else self.access_ttl)
        pair = TokenPair(
            access_token=mint_token(expiry),
            refresh_token=f"refresh-{uuid.uuid4().hex}",
        )
        self.issued.append(pair)
        return pair

    async def login(self, credentials: LoginCredentials) -> LoginResponse:
        self.login_calls.append(credentials)
        if self.login_gate is not None:
            await self.login_gate.wait()
        if self.login_error is not None:
            raise self.login_error
        return LoginResponse(
            tokens=self.issue(),
            user={"email": credentials.email},
            requires_onboarding=self.requires_onboarding,
        )

    async def get_current_user(self, access_token: str) -> User:
        self.me_calls.append(access_token)
        if self.me_gate is not None:
            await self.me_gate.wait()
        if self.me_error is not None:
            raise self.me_error
        return User.model_validate(self.user)

    async def refresh(self, refresh_token: str) -> TokenPair:
        self.refresh_calls.append(refresh_token)
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_error is not None:
            raise self.refresh_error
        if refresh_token in self._consumed:
            raise RefreshRejectedError("Refresh token already used", status_code=401)
        self._consumed.add(refresh_token)
        return self.issue()

    async def logout(self, access_token: Optional[str]) -> None:
        self.logout_calls.append(access_token)
        if self.logout_error is not None:
            raise self.logout_error



class GatedStore(SecureStore):
    """
    SecureStore dont la prochaine lecture du jeton d'accès est suspendue
    après la lecture, jusqu'à ce que gate soit levé. paused signale
    que la lecture est en attente.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.gate: Optional[asyncio.Event] = None
        self.paused = asyncio.Event()

    async def get(self, key: str) -> Any:
        value = await super().get(key)
        gate = self.gate
        if key == ACCESS_TOKEN_KEY and gate is not None:
            self.gate = None
            self.paused.set()
            await gate.wait()
        return value


@pytest.fixture
def clock() -> FakeClock:
    """Horloge figée au 2025-01-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def logger() -> StructuredLogger:
    """Logger capturant toutes les entrées (DEBUG)."""
    return StructuredLogger("test", config=LogConfig(min_level=LogLevel.DEBUG))


@pytest.fixture
def backend() -> InMemoryKeyValueBackend:
    return InMemoryKeyValueBackend()


@pytest.fixture
def store(backend: InMemoryKeyValueBackend, logger: StructuredLogger, clock: FakeClock) -> SecureStore:
    """SecureStore à coût bcrypt minimal."""
    return SecureStore(backend, hash_rounds=4, logger=logger, clock=clock)


@pytest.fixture
def identity(clock: FakeClock) -> FakeIdentityService:
    return FakeIdentityService(clock)


@pytest_asyncio.fixture
async def monitor(store, identity, logger, clock):
    """SessionMonitor; tous les suivis sont arrêtés au démontage."""
    session_monitor = SessionMonitor(store, identity, logger=logger, clock=clock)
    yield session_monitor
    session_monitor.stop_all()


@pytest_asyncio.fixture
async def orchestrator(store, identity, monitor, logger, clock):
    """
    Orchestrateur à poll très lent: les tests pilotent les ticks
    explicitement via monitor.tick().
    """
    session_orchestrator = SessionOrchestrator(
        store,
        identity,
        monitor,
        logger=logger,
        clock=clock,
        warning_lead_time=timedelta(minutes=5),
        poll_interval=timedelta(hours=1),
    )
    yield session_orchestrator
    await session_orchestrator.close()


@pytest.fixture
def credentials() -> LoginCredentials:
    return LoginCredentials(email="jane@faith.example.com", password="s3cret!", tenant="faith")


@pytest.fixture
def mint():
    """Fabrique de jetons signés: mint(exp, **claims)."""
    return mint_token


@pytest.fixture
def gated_store(backend: InMemoryKeyValueBackend, logger: StructuredLogger, clock: FakeClock) -> GatedStore:
    return GatedStore(backend, hash_rounds=4, logger=logger, clock=clock)


@pytest_asyncio.fixture
async def gated_monitor(gated_store, identity, logger, clock):
    session_monitor = SessionMonitor(gated_store, identity, logger=logger, clock=clock)
    yield session_monitor
    session_monitor.stop_all()


@pytest_asyncio.fixture
async def gated_orchestrator(gated_store, identity, gated_monitor, logger, clock):
    """Orchestrateur au-dessus de GatedStore, poll piloté par le test."""
    session_orchestrator = SessionOrchestrator(
        gated_store,
        identity,
        gated_monitor,
        logger=logger,
        clock=clock,
        warning_lead_time=timedelta(minutes=5),
        poll_interval=timedelta(hours=1),
    )
    yield session_orchestrator
    await session_orchestrator.close()
