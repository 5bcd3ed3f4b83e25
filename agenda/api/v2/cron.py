"""
Cron trigger endpoints.

Meant for an external scheduler (platform cron, k8s CronJob). When
CRON_SECRET is set the caller must send it in ``X-Cron-Secret``.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header

from agenda.api.deps import Config, DbSession
from agenda.config import settings
from agenda.exceptions import UnauthorizedError
from agenda.schemas.payment import MaintenanceResponse
from agenda.services.maintenance import run_maintenance_sweep

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_cron_secret(provided: Optional[str]) -> None:
    expected = settings.CRON_SECRET
    if not expected:
        return
    if not provided or not hmac.compare_digest(provided, expected):
        raise UnauthorizedError("Invalid cron secret")


@router.post("/maintenance", response_model=MaintenanceResponse)
async def run_maintenance(
    db: DbSession,
    config: Config,
    x_cron_secret: Optional[str] = Header(None),
) -> MaintenanceResponse:
    """
    Run one bounded maintenance pass.

    Call again until both counts are 0 to drain a larger backlog.
    """
    _check_cron_secret(x_cron_secret)
    result = await run_maintenance_sweep(db, config=config)
    return MaintenanceResponse(completed_count=result.completed_count, canceled_count=result.canceled_count)
