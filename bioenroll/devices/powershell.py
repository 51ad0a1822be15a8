import logging
import os
from typing import Any, Dict, List, Optional

from bioenroll.devices.base import CaptureOutcome, DeviceDescriptor, SdkError
from bioenroll.devices.process import parse_json_object, run_process

logger = logging.getLogger(__name__)

REQUIRED_LIBRARIES = ("DPFPDevNET.dll", "DPFPEngNET.dll", "DPFPShrNET.dll")


class PowerShellCaptureDevice:
    """
    DigitalPersona .NET SDK driven through a PowerShell script.

    Each command (init, query, capture, cleanup) runs the script once and
    reads a single JSON object from its stdout. When the SDK libraries are not
    installed the adapter stays usable in simulation mode; simulated captures
    are never eligible for enrollment.
    """

    def __init__(
        self,
        script_path: str,
        sdk_lib_path: str,
        powershell_exe: str = "powershell.exe",
        timeout: float = 10.0,
    ):
        self.script_path = script_path
        self.sdk_lib_path = sdk_lib_path
        self.powershell_exe = powershell_exe
        self.timeout = timeout
        self.initialized = False
        self.simulation = False
        self.device_connected = False
        self.device_list: List[DeviceDescriptor] = []

    async def execute(self, command: str, **params: Any) -> Dict[str, Any]:
        args = [
            self.powershell_exe,
            "-ExecutionPolicy", "Bypass",
            "-NoProfile",
            "-File", self.script_path,
            "-Command", command,
        ]
        for key, value in params.items():
            args.extend([f"-{key}", "" if value is None else str(value)])

        result = await run_process(args, timeout=self.timeout, cwd=os.path.dirname(self.script_path) or None)
        if result.stderr.strip():
            logger.warning(f"PowerShell stderr ({command}): {result.stderr.strip()}")
        return parse_json_object(result.stdout)

    async def initialize(self) -> bool:
        logger.info("Initializing DigitalPersona .NET SDK through PowerShell")

        if not os.path.isdir(self.sdk_lib_path):
            logger.warning(f"DigitalPersona SDK directory not found: {self.sdk_lib_path}; running in simulation mode")
            self.simulation = True
            self.initialized = True
            return self.initialized

        missing = [
            dll for dll in REQUIRED_LIBRARIES
            if not os.path.exists(os.path.join(self.sdk_lib_path, dll))
        ]
        if missing:
            logger.warning(f"DigitalPersona libraries not found: {', '.join(missing)}; captures will be simulated")
            self.simulation = True

        if not os.path.exists(self.script_path):
            raise SdkError(f"SDK script not found: {self.script_path}")

        result = await self.execute("init")
        self.initialized = result.get("status") == "success"
        if not self.initialized:
            raise SdkError(result.get("message") or "DigitalPersona SDK initialization failed")

        await self.get_devices()
        return self.initialized

    async def get_devices(self) -> List[DeviceDescriptor]:
        if self.simulation and not os.path.exists(self.script_path):
            self.device_list = []
            self.device_connected = False
            return self.device_list

        try:
            result = await self.execute("query")
        except SdkError as e:
            logger.warning(f"Device enumeration failed: {e}")
            self.device_list = []
            self.device_connected = False
            return self.device_list

        devices = result.get("devices") or []
        if isinstance(devices, dict):
            devices = [devices]

        self.device_list = [DeviceDescriptor.from_sdk(device) for device in devices]
        self.device_connected = any(device.connected for device in self.device_list)
        logger.info(f"Found {len(self.device_list)} device(s), connected: {self.device_connected}")
        return self.device_list

    async def capture_fingerprint(self) -> CaptureOutcome:
        if not self.initialized:
            raise SdkError("DigitalPersona not initialized")

        if self.simulation and not os.path.exists(self.script_path):
            return CaptureOutcome(
                status="success",
                quality="simulated",
                device_name="DigitalPersona Reader (simulated)",
                is_simulated=True,
                message="SDK libraries not installed - capture simulated",
            )

        result = await self.execute("capture")
        status = result.get("status")
        message: Optional[str] = result.get("message")

        if status == "success":
            if result.get("quality") in ("poor", "fallback"):
                raise SdkError(
                    "Poor quality capture - please ensure finger is firmly placed on scanner surface"
                )
            outcome = CaptureOutcome.from_sdk(result)
            if outcome.quality == "simulated" or self.simulation:
                outcome.is_simulated = True
            return outcome

        if status == "error" and message and "No finger detected" in message:
            return CaptureOutcome(
                status="no_finger",
                message="No finger detected on scanner. Please place your finger on the scanner surface.",
            )

        raise SdkError(message or "Fingerprint capture failed")

    async def cleanup(self) -> None:
        if not self.initialized:
            return
        try:
            if os.path.exists(self.script_path):
                await self.execute("cleanup")
        finally:
            self.initialized = False
            logger.info("DigitalPersona SDK cleaned up")
