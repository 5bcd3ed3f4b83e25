from fastapi import APIRouter
from agenda.api.v2 import (
    slots,
    appointments,
    payments,
    cron,
)

api_router = APIRouter()

# Include all v2 routers
api_router.include_router(slots.router, prefix="/slots", tags=["slots"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(cron.router, prefix="/cron", tags=["cron"])
