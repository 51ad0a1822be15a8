from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

HARDWARE_BIOMETRIC = "hardware_biometric"

# on_progress(event, attempt, quality) with event in {"attempt_start", "attempt_complete"}
ProgressCallback = Callable[[str, int, Optional[int]], Union[None, Awaitable[None]]]


class SdkError(Exception):
    """The biometric SDK or its helper process could not serve a request."""


class EnrollError(SdkError):
    """The helper's combined enrollment did not produce a template."""


@dataclass
class CaptureOutcome:
    status: str
    capture_data: Optional[str] = None
    device_name: Optional[str] = None
    quality: Optional[str] = None
    is_native: bool = False
    is_simulated: bool = False
    is_fallback: bool = False
    security_level: Optional[str] = None
    template_id: Optional[str] = None
    encrypted_template: Optional[str] = None
    nonce: Optional[str] = None
    liveness_data: Optional[Any] = None
    message: Optional[str] = None
    timestamp: Optional[Any] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def no_finger(self) -> bool:
        return self.status == "no_finger"

    @property
    def enrollment_eligible(self) -> bool:
        return (
            self.succeeded
            and not self.is_simulated
            and not self.is_fallback
            and self.security_level == HARDWARE_BIOMETRIC
        )

    @classmethod
    def from_sdk(cls, payload: Dict[str, Any]) -> "CaptureOutcome":
        return cls(
            status=payload.get("status", "failure"),
            capture_data=payload.get("captureData") or payload.get("fingerprintData"),
            device_name=payload.get("deviceName"),
            quality=payload.get("quality"),
            is_native=bool(payload.get("isNative", False)),
            is_simulated=bool(payload.get("isSimulated", False)),
            is_fallback=bool(payload.get("isFallback", False)),
            security_level=payload.get("securityLevel"),
            template_id=payload.get("templateId"),
            encrypted_template=payload.get("encryptedTemplate"),
            nonce=payload.get("nonce"),
            liveness_data=payload.get("livenessData"),
            message=payload.get("message"),
            timestamp=payload.get("timestamp"),
        )


@dataclass
class EnrollOutcome:
    success: bool
    template_base64: Optional[str] = None
    template_size: int = 0
    finger_id: Optional[int] = None
    detected_finger: Optional[int] = None
    requested_finger: Optional[int] = None
    method: Optional[str] = None
    message: Optional[str] = None


@dataclass
class DeviceDescriptor:
    name: str
    model: str
    vendor: str
    serial_number: str
    connected: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_sdk(cls, payload: Dict[str, Any]) -> "DeviceDescriptor":
        return cls(
            name=payload.get("name") or payload.get("product_name") or "DigitalPersona Reader",
            model=payload.get("model") or payload.get("product_name") or "U.are.U Reader",
            vendor=payload.get("vendor_name") or "DigitalPersona",
            serial_number=payload.get("serial_number") or "Unknown",
            connected=payload.get("connected", payload.get("Connected")) is not False,
        )


class CaptureDevice(ABC):
    """Contract of a fingerprint reader as seen by the enrollment service."""

    name: str = "capture-device"

    @abstractmethod
    async def initialize(self) -> bool:
        ...

    @abstractmethod
    async def get_devices(self) -> List[DeviceDescriptor]:
        ...

    @abstractmethod
    async def capture_fingerprint(self) -> CaptureOutcome:
        ...

    @abstractmethod
    async def enroll_fingerprint(
        self,
        user_id: int,
        finger_id: int,
        name: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EnrollOutcome:
        ...

    @abstractmethod
    async def cleanup(self) -> None:
        ...
