from fastapi import APIRouter

from .bio_enroll_router import router as bio_enroll_router

api_router = APIRouter()


api_router.include_router(
   bio_enroll_router,
   prefix="/bio-enroll",
   tags=["Bio Enrollment"]
)
