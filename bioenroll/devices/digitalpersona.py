from typing import List, Optional

from bioenroll.config import Settings
from bioenroll.devices.base import (
    CaptureDevice,
    CaptureOutcome,
    DeviceDescriptor,
    EnrollOutcome,
    ProgressCallback,
)
from bioenroll.devices.gui_helper import GuiEnrollmentHelper
from bioenroll.devices.powershell import PowerShellCaptureDevice


class DigitalPersonaDevice(CaptureDevice):
    """One reader: single captures go through PowerShell, full enrollment through the GUI helper."""

    name = "digitalpersona"

    def __init__(self, capture: PowerShellCaptureDevice, enroller: GuiEnrollmentHelper):
        self.capture = capture
        self.enroller = enroller

    @classmethod
    def from_settings(cls, settings: Settings) -> "DigitalPersonaDevice":
        return cls(
            PowerShellCaptureDevice(
                script_path=settings.sdk_script_path,
                sdk_lib_path=settings.sdk_lib_path,
                powershell_exe=settings.powershell_exe,
                timeout=settings.sdk_command_timeout,
            ),
            GuiEnrollmentHelper(settings.biometric_helper_path, timeout=settings.enroll_timeout),
        )

    async def initialize(self) -> bool:
        return await self.capture.initialize()

    async def get_devices(self) -> List[DeviceDescriptor]:
        return await self.capture.get_devices()

    async def capture_fingerprint(self) -> CaptureOutcome:
        return await self.capture.capture_fingerprint()

    async def enroll_fingerprint(
        self,
        user_id: int,
        finger_id: int,
        name: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EnrollOutcome:
        return await self.enroller.enroll_fingerprint(user_id, finger_id, name, on_progress)

    async def cleanup(self) -> None:
        await self.capture.cleanup()
