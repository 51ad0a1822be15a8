import asyncio
import base64
import os
from dataclasses import replace
from typing import List, Optional

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["API_TOKEN"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from bioenroll.config import Settings
from bioenroll.database import get_db
from bioenroll.devices.base import (
    CaptureDevice,
    CaptureOutcome,
    DeviceDescriptor,
    EnrollOutcome,
    HARDWARE_BIOMETRIC,
)
from bioenroll.models.finger_template import FingerTemplate  # noqa: F401
from bioenroll.models.user_info import UserInfo  # noqa: F401
from bioenroll.services.enrollment_service import EnrollmentRuntime

TEMPLATE_BYTES = b"DPFP-GUI-TEMPLATE-0123456789"


def hardware_capture(data: str = "fingerprint-specimen-data", **overrides) -> CaptureOutcome:
    values = dict(
        status="success",
        capture_data=data,
        device_name="U.are.U 4500",
        quality="good",
        is_native=True,
        security_level=HARDWARE_BIOMETRIC,
        template_id="tpl-1234567890abcdef",
    )
    values.update(overrides)
    return CaptureOutcome(**values)


class FakeDevice(CaptureDevice):
    """Scripted reader; counts every call made against it."""

    name = "fake"

    def __init__(
        self,
        captures: Optional[List] = None,
        enroll_result=None,
        detected_finger: Optional[int] = None,
        init_error: Optional[Exception] = None,
        enroll_gate: Optional[asyncio.Event] = None,
    ):
        self.captures = list(captures or [])
        self.enroll_result = enroll_result
        self.detected_finger = detected_finger
        self.init_error = init_error
        self.enroll_gate = enroll_gate
        self.calls = {"initialize": 0, "capture": 0, "enroll": 0, "cleanup": 0, "devices": 0}

    async def initialize(self) -> bool:
        self.calls["initialize"] += 1
        if self.init_error:
            raise self.init_error
        return True

    async def get_devices(self):
        self.calls["devices"] += 1
        return [DeviceDescriptor("DigitalPersona Reader", "U.are.U 4500", "DigitalPersona", "SN-1")]

    async def capture_fingerprint(self) -> CaptureOutcome:
        self.calls["capture"] += 1
        if not self.captures:
            return CaptureOutcome(status="no_finger", message="No finger detected")
        outcome = self.captures.pop(0) if len(self.captures) > 1 else self.captures[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def enroll_fingerprint(self, user_id, finger_id, name, on_progress=None) -> EnrollOutcome:
        self.calls["enroll"] += 1
        if self.enroll_gate is not None:
            await self.enroll_gate.wait()
        if isinstance(self.enroll_result, Exception):
            raise self.enroll_result
        if on_progress:
            for attempt in (1, 2, 3):
                on_progress("attempt_start", attempt, None)
                on_progress("attempt_complete", attempt, 95)
        if self.enroll_result is not None:
            return self.enroll_result
        detected = self.detected_finger if self.detected_finger is not None else finger_id
        return EnrollOutcome(
            success=True,
            template_base64=base64.b64encode(TEMPLATE_BYTES).decode(),
            template_size=len(TEMPLATE_BYTES),
            finger_id=detected,
            detected_finger=detected,
            requested_finger=finger_id,
            method="dpfp_gui_sdk",
        )

    async def cleanup(self) -> None:
        self.calls["cleanup"] += 1


def make_settings(**overrides) -> Settings:
    base = Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        retention_seconds=300.0,
        no_finger_retry_delay=0.0,
        attempt_retry_delay=0.0,
        specimen_delay=0.0,
    )
    return replace(base, **overrides)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
async def runtime(settings, device):
    runtime = EnrollmentRuntime(settings, device)
    yield runtime
    await runtime.shutdown()
    runtime.store.clear()


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def app(runtime, session_factory):
    from main import create_app

    app = create_app(runtime)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
