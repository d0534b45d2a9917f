"""
Test configuration and fixtures
SQLite in memory, the gateway scripted through httpx.MockTransport
"""

import base64
import json
import pytest
import pytest_asyncio
from typing import AsyncGenerator, Dict, List, Optional, Tuple
from datetime import date, datetime, timezone
from decimal import Decimal
import os

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "staynest-test-secret-key-0123456789abcdef"
os.environ["JWT_SECRET_KEY"] = "staynest-test-jwt-secret-0123456789abcdef"
os.environ["PHONEPE_MERCHANT_ID"] = "STAYNESTTEST"
os.environ["PHONEPE_SALT_KEY"] = "099eb0cd-02cf-4e2a-8aca-3e6c6aff0399"
os.environ["PHONEPE_KEY_INDEX"] = "1"
os.environ["PHONEPE_BASE_URL"] = "https://gateway.test/apis/pg-sandbox"
os.environ["PAYMENT_LOCK_BACKEND"] = "local"
os.environ["PAYMENT_SIGNATURE_BYPASS"] = "false"
os.environ["PROMETHEUS_ENABLED"] = "true"

# Import all models BEFORE creating fixtures (critical for create_all to work)
from app.core.database import Base
from app.models.user import User, UserRole
from app.models.property import Property, PropertyType, Room
from app.models.booking import Booking, BookingStatus
from app.models.payment import Payment, PaymentMethod, PaymentStatus
from app.config import settings
from prometheus_client import REGISTRY

from app.core.locks import LocalReconciliationLock
from app.core.security import create_access_token
from app.services.gateway_client import PhonePeClient
from app.services.reconciler import PaymentReconciler
from app.services.signature import compute_signature


def metric_value(name: str, labels: Optional[Dict[str, str]] = None) -> float:
    """Current value of a prometheus sample, 0 when never observed"""
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def sign(raw_body: bytes) -> str:
    """X-VERIFY header the gateway would send for ``raw_body``"""
    return compute_signature(
        raw_body,
        settings.PAYMENT_CALLBACK_CONTEXT_PATH,
        settings.PHONEPE_SALT_KEY,
        settings.PHONEPE_KEY_INDEX
    )


def callback_body(correlation_id: str, code: str, amount: int = 10000, state: Optional[str] = None) -> bytes:
    """Callback payload in the gateway's status-response shape"""
    return json.dumps({
        "success": code == "PAYMENT_SUCCESS",
        "code": code,
        "message": "Your payment is processed",
        "data": {
            "merchantId": settings.PHONEPE_MERCHANT_ID,
            "merchantTransactionId": correlation_id,
            "transactionId": "T2310121234567890",
            "amount": amount,
            "state": state or ("COMPLETED" if code == "PAYMENT_SUCCESS" else "FAILED"),
            "responseCode": "SUCCESS" if code == "PAYMENT_SUCCESS" else "ZM",
        }
    }).encode("utf-8")


class GatewayStub:
    """
    Scripted PhonePe PG API
    """

    redirect_url = "https://mercury-uat.phonepe.test/transact/pg?token=abc123"

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.amounts: Dict[str, int] = {}
        self.pay_response: Optional[Tuple[int, dict]] = None
        self.status_code_token = "PAYMENT_PENDING"
        self.status_amount: Optional[int] = None
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error

        if request.url.path.endswith("/pg/v1/pay"):
            payload = json.loads(base64.b64decode(json.loads(request.content)["request"]))
            txn = payload["merchantTransactionId"]
            self.amounts[txn] = payload["amount"]
            if self.pay_response is not None:
                status_code, body = self.pay_response
                return httpx.Response(status_code, json=body)
            return httpx.Response(200, json={
                "success": True,
                "code": "PAYMENT_INITIATED",
                "message": "Payment initiated",
                "data": {
                    "merchantId": payload["merchantId"],
                    "merchantTransactionId": txn,
                    "instrumentResponse": {
                        "type": "PAY_PAGE",
                        "redirectInfo": {"url": self.redirect_url, "method": "GET"}
                    }
                }
            })

        txn = request.url.path.rsplit("/", 1)[-1]
        token = self.status_code_token
        state = {"PAYMENT_SUCCESS": "COMPLETED", "PAYMENT_PENDING": "PENDING"}.get(token, "FAILED")
        return httpx.Response(200, json={
            "success": token == "PAYMENT_SUCCESS",
            "code": token,
            "message": "Status fetched",
            "data": {
                "merchantId": settings.PHONEPE_MERCHANT_ID,
                "merchantTransactionId": txn,
                "amount": self.status_amount if self.status_amount is not None else self.amounts.get(txn, 0),
                "state": state,
            }
        })

    @property
    def pay_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/pg/v1/pay")]

    def client(self) -> PhonePeClient:
        return PhonePeClient(
            merchant_id=settings.PHONEPE_MERCHANT_ID,
            salt_key=settings.PHONEPE_SALT_KEY,
            key_index=settings.PHONEPE_KEY_INDEX,
            base_url=settings.PHONEPE_BASE_URL,
            timeout=2.0,
            transport=httpx.MockTransport(self.handler),
        )


@pytest_asyncio.fixture(scope="function")
async def test_db():
    """Create async database engine for tests"""
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_db) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async_session_maker = async_sessionmaker(
        test_db,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


@pytest.fixture
def gateway() -> GatewayStub:
    return GatewayStub()


@pytest.fixture
def reconciler(db_session) -> PaymentReconciler:
    return PaymentReconciler(db_session, LocalReconciliationLock())


@pytest_asyncio.fixture
async def client(db_session, gateway):
    """Create test client with dependency override"""
    from app.main import app
    from app.core.database import get_session
    from app.services.gateway_client import get_gateway_client

    def override_get_session():
        yield db_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_gateway_client] = gateway.client

    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


async def _create_user(db_session: AsyncSession, email: str, role: UserRole) -> User:
    user = User(
        email=email,
        full_name=email.split("@")[0].title(),
        phone="+919800000000",
        role=role,
        is_active=True
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(db_session) -> User:
    return await _create_user(db_session, "tenant@example.com", UserRole.CUSTOMER)


@pytest_asyncio.fixture
async def other_user(db_session) -> User:
    return await _create_user(db_session, "neighbour@example.com", UserRole.CUSTOMER)


@pytest_asyncio.fixture
async def admin_user(db_session) -> User:
    return await _create_user(db_session, "warden@example.com", UserRole.ADMIN)


@pytest.fixture
def auth_headers(test_user) -> dict:
    """Create authentication headers"""
    token = create_access_token({"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(other_user) -> dict:
    token = create_access_token({"sub": str(other_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_user) -> dict:
    token = create_access_token({"sub": str(admin_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_room(db_session) -> Room:
    prop = Property(
        name="Sunrise Residency",
        slug="sunrise-residency",
        property_type=PropertyType.PG,
        address="12 MG Road",
        city="Bengaluru",
        is_active=True
    )
    db_session.add(prop)
    await db_session.flush()

    room = Room(
        property_id=prop.id,
        room_number="204",
        sharing=2,
        monthly_rent=Decimal("100.00"),
        food_available=True,
        is_available=True
    )
    db_session.add(room)
    await db_session.commit()
    await db_session.refresh(room)
    return room


async def make_booking(
    db_session: AsyncSession,
    user: User,
    room: Room,
    status: BookingStatus = BookingStatus.PENDING
) -> Booking:
    booking = Booking(
        customer_id=user.id,
        room_id=room.id,
        status=status,
        price=room.monthly_rent,
        food_included=False,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 12, 31),
        room_snapshot={"room_number": room.room_number},
    )
    db_session.add(booking)
    await db_session.commit()
    await db_session.refresh(booking)
    return booking


@pytest_asyncio.fixture
async def test_booking(db_session, test_user, test_room) -> Booking:
    return await make_booking(db_session, test_user, test_room)


async def make_payment(
    db_session: AsyncSession,
    user: User,
    booking: Optional[Booking] = None,
    status: PaymentStatus = PaymentStatus.INITIATED,
    correlation_id: Optional[str] = "PAYTEST000000000001",
    amount: Decimal = Decimal("100.00"),
    period: date = date(2026, 1, 1)
) -> Payment:
    payment = Payment(
        customer_id=user.id,
        booking_id=booking.id if booking else None,
        amount=amount,
        currency="INR",
        status=status,
        payment_method=PaymentMethod.UPI,
        period_start=period,
        due_date=period.replace(day=5),
        booking_snapshot={"booking_id": str(booking.id)} if booking else {},
        merchant_transaction_id=correlation_id if status != PaymentStatus.PENDING else None,
        initiated_at=datetime.now(timezone.utc) if status != PaymentStatus.PENDING else None,
    )
    db_session.add(payment)
    await db_session.commit()
    await db_session.refresh(payment)
    return payment


@pytest.fixture
def booking_factory(db_session):
    async def factory(user: User, room: Room, status: BookingStatus = BookingStatus.PENDING) -> Booking:
        return await make_booking(db_session, user, room, status)
    return factory


@pytest.fixture
def payment_factory(db_session):
    async def factory(user: User, booking: Optional[Booking] = None, **kwargs) -> Payment:
        return await make_payment(db_session, user, booking, **kwargs)
    return factory
