"""Pytest configuration and fixtures."""

import os

# Must be set before the app reads its settings
os.environ["DATABASE_URL"] = ""
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.clock import utcnow  # noqa: E402
from app.database import Base, get_connectivity, get_db  # noqa: E402
from app.dependencies import (  # noqa: E402
    get_auth_service,
    get_memory_backend,
    get_pending_store,
    get_two_factor_service,
)
from app.models.user import User  # noqa: E402, F401
from app.services.auth import AuthService  # noqa: E402
from app.services.credential_store import CredentialStore, InMemoryUserBackend, SqlUserBackend  # noqa: E402
from app.services.jwt import JWTService, get_jwt_service  # noqa: E402
from app.services.session_gate import SessionGate, get_session_gate  # noqa: E402
from app.services.two_factor import PendingSecretStore, TwoFactorService  # noqa: E402

STRONG_PASSWORD = "Str0ng!Pass"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class SwitchableConnectivity:
    """Connectivity strategy tests can flip to simulate an outage."""

    def __init__(self, available: bool = True) -> None:
        self.available = available

    def is_available(self) -> bool:
        return self.available


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="connectivity")
def connectivity_fixture() -> SwitchableConnectivity:
    return SwitchableConnectivity(available=True)


@pytest.fixture(name="memory_users")
def memory_users_fixture() -> InMemoryUserBackend:
    return InMemoryUserBackend()


@pytest.fixture(name="pending")
def pending_fixture() -> PendingSecretStore:
    return PendingSecretStore(ttl=timedelta(minutes=10))


@pytest.fixture(name="store")
def store_fixture(db_session: Session, memory_users: InMemoryUserBackend, connectivity: SwitchableConnectivity):
    return CredentialStore(SqlUserBackend(db_session), memory_users, connectivity)


@pytest.fixture(name="jwt_service")
def jwt_service_fixture(clock: FakeClock) -> JWTService:
    return JWTService(clock=clock)


@pytest.fixture(name="two_factor_service")
def two_factor_service_fixture(pending: PendingSecretStore, clock: FakeClock) -> TwoFactorService:
    return TwoFactorService(pending, clock=clock)


@pytest.fixture(name="auth_service")
def auth_service_fixture(two_factor_service: TwoFactorService, clock: FakeClock) -> AuthService:
    return AuthService(two_factor_service, clock=clock)


@pytest.fixture(name="client")
def client_fixture(
    db_session: Session,
    connectivity: SwitchableConnectivity,
    memory_users: InMemoryUserBackend,
    pending: PendingSecretStore,
    jwt_service: JWTService,
    two_factor_service: TwoFactorService,
    auth_service: AuthService,
    clock: FakeClock,
):
    """Create a test client with overridden storage, clock-driven services and disabled rate limiting."""
    from app.rate_limit import limiter
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    gate = SessionGate(jwt_service, clock=clock)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_connectivity] = lambda: connectivity
    app.dependency_overrides[get_memory_backend] = lambda: memory_users
    app.dependency_overrides[get_pending_store] = lambda: pending
    app.dependency_overrides[get_jwt_service] = lambda: jwt_service
    app.dependency_overrides[get_session_gate] = lambda: gate
    app.dependency_overrides[get_two_factor_service] = lambda: two_factor_service
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture(name="test_user")
def test_user_fixture(store: CredentialStore, auth_service: AuthService, jwt_service: JWTService):
    """Create a test user and return (user_data, token)."""
    user = auth_service.register(store, "alice", "alice@x.com", STRONG_PASSWORD)
    return {
        "user_id": user.id,
        "username": user.username,
        "email": user.email,
        "password": STRONG_PASSWORD,
        "token": jwt_service.create_token(user.id),
    }
