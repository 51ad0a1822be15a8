import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bioenroll.config import Settings
from bioenroll.core.exceptions import (
    EnrollmentNotFoundError,
    EnrollmentValidationError,
    FingerAlreadyEnrolledError,
    TemplatePersistenceError,
)
from bioenroll.devices.base import CaptureDevice, CaptureOutcome, DeviceDescriptor, SdkError
from bioenroll.models.finger_template import FingerTemplate
from bioenroll.repos.finger_template_repo import FingerTemplateRepository
from bioenroll.repos.user_info_repo import UserInfoRepository
from bioenroll.schemas.enrollment import FingerTemplateCreate, SaveEnrollmentRequest
from bioenroll.services.sessions import EnrollmentSession, InMemoryProgressStore, ProgressStore
from bioenroll.services.strategies import EnrollmentStrategy, build_strategy
from bioenroll.services.supervisor import DeviceGate, TaskSupervisor

logger = logging.getLogger(__name__)

MIN_FINGER_ID = 0
MAX_FINGER_ID = 9


@dataclass
class FingerAvailability:
    available: bool
    message: str
    existing_template: bool
    has_valid_data: bool
    fuid: Optional[UUID] = None
    created_date: Optional[datetime] = None
    template_size: Optional[int] = None

    def details(self) -> Dict[str, Any]:
        return {
            "existingTemplate": self.existing_template,
            "hasValidData": self.has_valid_data,
            "fuid": str(self.fuid) if self.fuid else None,
            "createdDate": self.created_date.isoformat() if self.created_date else None,
            "templateSize": self.template_size,
        }


@dataclass
class SavedEnrollment:
    template: FingerTemplate
    samples_collected: Optional[int]
    avg_quality: Optional[float]
    template_size: int


@dataclass
class HealthReport:
    sdk_ready: bool
    device: Optional[DeviceDescriptor]


class EnrollmentRuntime:
    """Process-wide enrollment state: the reader, its gate, the session store and running tasks."""

    def __init__(
        self,
        settings: Settings,
        device: CaptureDevice,
        strategy: Optional[EnrollmentStrategy] = None,
        store: Optional[ProgressStore] = None,
        supervisor: Optional[TaskSupervisor] = None,
        gate: Optional[DeviceGate] = None,
    ):
        self.settings = settings
        self.device = device
        self.strategy = strategy or build_strategy(settings)
        self.store = store if store is not None else InMemoryProgressStore()
        self.supervisor = supervisor or TaskSupervisor()
        self.gate = gate or DeviceGate(settings.device_concurrency)

    def get_session(self, enrollment_id: str) -> EnrollmentSession:
        session = self.store.get(enrollment_id)
        if session is None:
            raise EnrollmentNotFoundError("Enrollment not found")
        return session

    def cancel(self, enrollment_id: str) -> EnrollmentSession:
        session = self.get_session(enrollment_id)
        if self.supervisor.cancel(enrollment_id) and not session.is_terminal:
            session.fail("Enrollment cancelled")
            self.store.set(session)
            self.store.expire_after(enrollment_id, self.settings.retention_seconds)
        return session

    async def capture_fingerprint(self) -> CaptureOutcome:
        async with self.gate.hold(f"capture-{uuid4()}"):
            try:
                await self.device.initialize()
            except Exception as e:
                raise SdkError(f"Failed to initialize DigitalPersona SDK for fingerprint capture: {e}") from e
            try:
                capture = await self.device.capture_fingerprint()
            finally:
                try:
                    await self.device.cleanup()
                except Exception as e:
                    logger.warning(f"SDK cleanup warning: {e}")

        if not capture.succeeded:
            raise SdkError(capture.message or "Fingerprint capture failed")
        return capture

    async def health(self) -> HealthReport:
        sdk_ready = False
        descriptor = None
        try:
            sdk_ready = bool(await self.device.initialize())
            devices = await self.device.get_devices()
            if devices:
                descriptor = devices[0]
            else:
                logger.warning("No fingerprint devices found")
        except Exception as e:
            logger.warning(f"SDK initialization or device query failed: {e}")
        finally:
            try:
                await self.device.cleanup()
            except Exception as e:
                logger.warning(f"SDK cleanup warning: {e}")
        return HealthReport(sdk_ready=sdk_ready, device=descriptor)

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()


def validate_identity(user_id: Optional[int], finger_id: Optional[int]) -> None:
    if user_id is None or finger_id is None:
        raise EnrollmentValidationError("User ID and Finger ID are required")
    if user_id <= 0:
        raise EnrollmentValidationError("User ID must be a positive integer")
    if not MIN_FINGER_ID <= finger_id <= MAX_FINGER_ID:
        raise EnrollmentValidationError(
            f"Finger ID must be between {MIN_FINGER_ID} and {MAX_FINGER_ID}"
        )


class EnrollmentService:
    def __init__(self, db: AsyncSession, runtime: EnrollmentRuntime):
        self.db = db
        self.runtime = runtime
        self.templates = FingerTemplateRepository(db)
        self.users = UserInfoRepository(db)

    # ----------------------
    # Finger slot availability
    # ----------------------
    async def check_finger(self, user_id: int, finger_id: int) -> FingerAvailability:
        validate_identity(user_id, finger_id)
        logger.info(f"Validating finger enrollment for user {user_id}, finger {finger_id}")

        existing = await self.templates.get_for_finger(user_id, finger_id)
        if existing is None:
            return FingerAvailability(
                available=True,
                message=f"Finger {finger_id} is available for enrollment",
                existing_template=False,
                has_valid_data=False,
            )

        if existing.has_valid_template:
            logger.info(
                f"Finger {finger_id} for user {user_id} already enrolled "
                f"(FUID {existing.fuid}, {existing.template_size} bytes)"
            )
            return FingerAvailability(
                available=False,
                message=f"Finger {finger_id} is already enrolled for this user",
                existing_template=True,
                has_valid_data=True,
                fuid=existing.fuid,
                created_date=existing.created_date,
                template_size=existing.template_size,
            )

        logger.info(f"Finger {finger_id} for user {user_id} has an empty template row; treating as available")
        return FingerAvailability(
            available=True,
            message=f"Finger {finger_id} has no template data and is available for enrollment",
            existing_template=True,
            has_valid_data=False,
            fuid=existing.fuid,
            created_date=existing.created_date,
        )

    async def ensure_finger_available(self, user_id: int, finger_id: int) -> None:
        availability = await self.check_finger(user_id, finger_id)
        if not availability.available:
            raise FingerAlreadyEnrolledError(availability.message, availability.details())

    # ----------------------
    # Enrollment lifecycle
    # ----------------------
    async def resolve_name(self, user_id: int, name: Optional[str]) -> str:
        if name:
            return name
        return await self.users.get_name(user_id) or f"User_{user_id}"

    async def start_enrollment(self, user_id: int, finger_id: int, name: Optional[str] = None) -> EnrollmentSession:
        validate_identity(user_id, finger_id)
        user_name = await self.resolve_name(user_id, name)
        await self.ensure_finger_available(user_id, finger_id)

        runtime = self.runtime
        session = EnrollmentSession(
            user_id=user_id,
            finger_id=finger_id,
            user_name=user_name,
            strategy=runtime.strategy.name,
        )
        runtime.gate.claim(session.enrollment_id)
        runtime.store.set(session)
        logger.info(
            f"Enrollment {session.enrollment_id} started for user {user_id}, finger {finger_id} "
            f"using {runtime.strategy.name} strategy"
        )

        task = runtime.supervisor.spawn(session.enrollment_id, run_enrollment(runtime, session))
        task.add_done_callback(lambda _: runtime.gate.release(session.enrollment_id))
        return session


    # ----------------------
    # Persistence
    # ----------------------
    async def save_enrollment(self, request: SaveEnrollmentRequest) -> SavedEnrollment:
        session: Optional[EnrollmentSession] = None
        if request.enrollment_id:
            session = self.runtime.store.get(request.enrollment_id)

        template_base64 = request.template_base64
        user_id, finger_id, name = request.user_id, request.finger_id, request.name
        samples_collected, avg_quality = request.samples_collected, request.avg_quality

        if session is not None and session.template_base64:
            template_base64 = session.template_base64
            user_id = user_id if user_id is not None else session.user_id
            finger_id = finger_id if finger_id is not None else session.finger_id
            name = name or session.user_name
            samples_collected = session.samples_collected
            avg_quality = session.avg_quality
        else:
            session = None

        if user_id is None or finger_id is None or not template_base64:
            raise EnrollmentValidationError("User ID, Finger ID, and template data are required")
        validate_identity(user_id, finger_id)

        try:
            template_bytes = base64.b64decode(template_base64, validate=True)
        except (binascii.Error, ValueError):
            raise EnrollmentValidationError("Template data is not valid base64")
        if not template_bytes:
            raise EnrollmentValidationError("User ID, Finger ID, and template data are required")

        await self.ensure_finger_available(user_id, finger_id)

        try:
            saved = await self.templates.create(FingerTemplateCreate(
                user_id=user_id,
                finger_id=finger_id,
                name=name,
                finger_template=template_bytes,
            ))
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to save fingerprint for user {user_id}, finger {finger_id}: {e}")
            raise TemplatePersistenceError("Failed to save fingerprint to database", {"error": str(e)})

        logger.info(f"Saved template {saved.fuid} for user {user_id}, finger {finger_id} ({len(template_bytes)} bytes)")

        if session is not None:
            self.runtime.store.delete(session.enrollment_id)

        return SavedEnrollment(
            template=saved,
            samples_collected=samples_collected,
            avg_quality=avg_quality,
            template_size=len(template_bytes),
        )

    async def list_enrolled(self, user_id: int) -> List[FingerTemplate]:
        return await self.templates.list_valid_for_user(user_id)

    async def delete_finger(self, user_id: int, finger_id: int) -> int:
        validate_identity(user_id, finger_id)
        deleted = await self.templates.delete_for_finger(user_id, finger_id)
        logger.info(f"Deleted {deleted} template row(s) for user {user_id}, finger {finger_id}")
        return deleted


async def run_enrollment(runtime: EnrollmentRuntime, session: EnrollmentSession) -> None:
    """Background body of one enrollment; every outcome ends up in the session."""
    store = runtime.store
    try:
        async with runtime.gate.hold(session.enrollment_id):
            await runtime.strategy.run(session, runtime.device, store.set)
    except asyncio.CancelledError:
        session.fail("Enrollment cancelled")
        store.set(session)
        raise
    except Exception as e:
        logger.error(f"Enrollment {session.enrollment_id} failed: {e}")
        session.fail(str(e))
        store.set(session)
    finally:
        store.expire_after(session.enrollment_id, runtime.settings.retention_seconds)
