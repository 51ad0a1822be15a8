from fastapi import FastAPI
from sqlmodel import SQLModel
import uvicorn
from bioenroll.database import engine
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import logging

from bioenroll.config import get_settings
from bioenroll.devices.digitalpersona import DigitalPersonaDevice
from bioenroll.routers import api_router
from bioenroll.services.enrollment_service import EnrollmentRuntime

# Register table models with SQLModel metadata
from bioenroll.models.finger_template import FingerTemplate  # noqa: F401
from bioenroll.models.user_info import UserInfo  # noqa: F401

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    if getattr(app.state, "enrollment", None) is None:
        logger.info(f"Initializing enrollment runtime ({settings.enrollment_strategy} strategy)...")
        app.state.enrollment = EnrollmentRuntime(settings, DigitalPersonaDevice.from_settings(settings))
        logger.info("Enrollment runtime initialized successfully")

    yield

    # Cleanup
    await app.state.enrollment.shutdown()
    await engine.dispose()


def create_app(runtime: Optional[EnrollmentRuntime] = None) -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="HRIS - Biometric Fingerprint Enrollment API",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.enrollment = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {
            "message": "Biometric Enrollment API",
            "docs": "/docs",
            "redoc": "/redoc",
            "version": "1.0.0",
            "environment": settings.app_env,
            "strategy": settings.enrollment_strategy,
            "endpoints": {
                "health": "/bio-enroll/health",
                "enroll_finger": "/bio-enroll/enroll-finger",
                "enrollment_progress": "/bio-enroll/enrollment-progress/{enrollmentId}",
                "save_enrollment": "/bio-enroll/save-enrollment"
            }
        }

    app.include_router(api_router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.app_env != "production"
    )
