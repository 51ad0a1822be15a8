from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ----------------------
# Requests
# ----------------------
class EnrollFingerRequest(CamelModel):
    user_id: Optional[int] = None
    finger_id: Optional[int] = None
    name: Optional[str] = None


class SaveEnrollmentRequest(CamelModel):
    enrollment_id: Optional[str] = None
    user_id: Optional[int] = None
    finger_id: Optional[int] = None
    name: Optional[str] = None
    template_base64: Optional[str] = None
    samples_collected: Optional[int] = None
    avg_quality: Optional[float] = None
    quality_scores: Optional[List[float]] = None
    template_size: Optional[int] = None


class FingerTemplateCreate(BaseModel):
    user_id: int
    finger_id: int
    name: Optional[str] = None
    finger_template: bytes
    finger_image: Optional[bytes] = None


# ----------------------
# Responses
# ----------------------
class DeviceInfo(CamelModel):
    name: str
    model: str
    vendor: str
    serial_number: str
    connected: bool


class HealthResponse(CamelModel):
    success: bool
    message: str
    sdk_ready: bool
    device_info: Optional[DeviceInfo] = None
    timestamp: datetime


class FingerAvailabilityResponse(CamelModel):
    success: bool = True
    available: bool
    message: str
    existing_template: bool
    has_valid_data: bool
    fuid: Optional[UUID] = None
    created_date: Optional[datetime] = None


class CapturedFingerprint(CamelModel):
    capture_data: Optional[str] = None
    device_name: Optional[str] = None
    quality: Optional[str] = None
    is_native: bool = False
    timestamp: Optional[Any] = None


class CaptureResponse(CamelModel):
    success: bool
    message: str
    fingerprint_data: CapturedFingerprint


class EnrollmentStartedResponse(CamelModel):
    success: bool = True
    message: str = "Enrollment started"
    enrollment_id: str
    user_id: int
    finger_id: int


class EnrollmentProgressResponse(CamelModel):
    success: bool = True
    enrollment_id: str
    user_id: int
    finger_id: int
    detected_finger: Optional[int] = None
    requested_finger: Optional[int] = None
    finger_mismatch: bool = False
    user_name: Optional[str] = None
    status: str
    current_specimen: int
    total_specimens: int
    quality_scores: List[float]
    samples_collected: Optional[int] = None
    avg_quality: Optional[float] = None
    template_size: Optional[int] = None
    template_base64: Optional[str] = None
    start_time: datetime
    last_update: datetime
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    message: str


class SaveEnrollmentResponse(CamelModel):
    success: bool = True
    message: str = "Fingerprint saved successfully"
    user_id: int
    finger_id: int
    name: Optional[str] = None
    fuid: UUID
    samples_collected: Optional[int] = None
    avg_quality: Optional[float] = None
    template_size: Optional[int] = None
    timestamp: datetime


class EnrolledFinger(CamelModel):
    fuid: UUID
    finger_id: int
    name: Optional[str]
    template_size: int
    image_size: Optional[int]
    created_date: datetime


class EnrollmentStatusResponse(CamelModel):
    success: bool = True
    user_id: int
    enrolled_fingers: List[EnrolledFinger]
    total_enrolled: int


class DeleteFingerResponse(CamelModel):
    success: bool = True
    message: str
    rows_affected: int


class CancelEnrollmentResponse(CamelModel):
    success: bool = True
    message: str
    enrollment_id: str
    status: str
