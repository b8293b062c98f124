from fastapi import APIRouter
from carebook.modules.schedules.router import router as schedules_router
from carebook.modules.availability.router import router as availability_router
from carebook.modules.appointments.router import router as appointments_router

api_router = APIRouter()
api_router.include_router(schedules_router, tags=["schedules"])
api_router.include_router(availability_router, tags=["availability"])
api_router.include_router(appointments_router, tags=["appointments"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
