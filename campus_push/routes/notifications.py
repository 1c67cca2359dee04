"""
notifications.py
----------------
Purpose:
    Admin endpoints for the push notification engine.

    - Run any registered job immediately (one tick, same pipeline as the scheduler).
    - Manual sends to a user, a single device, or every registered device.
      Manual sends prune dead tokens but never stamp job watermarks.

Usage:
    Call with:
        Authorization: Bearer <ADMIN_API_TOKEN>
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from campus_push.auth.verify import admin_dependency
from campus_push.features.push_notifications.jobs.notification_job import NotificationJobError
from campus_push.features.push_notifications.repository.directory_repository import (
    DirectoryUnavailableError,
)
from campus_push.features.push_notifications.services.engine import PushEngine
from campus_push.features.push_notifications.services.manual_send import ManualSendError
from campus_push.infrastructure.observability.logging import get_logger
from campus_push.models.api.notification_request import (
    DeviceNotificationRequest,
    NotificationPayload,
)

router = APIRouter(
    prefix="/admin/notifications",
    tags=["notifications"],
    dependencies=[Depends(admin_dependency)],
)
logger = get_logger(__name__)


def get_engine(request: Request) -> PushEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Push engine not initialized"
        )
    return engine


@router.get("/jobs")
async def list_jobs(engine: PushEngine = Depends(get_engine)):
    """Registered jobs with their last tick and next scheduled run."""
    return engine.scheduler.get_status()


@router.post("/jobs/{job_name}/run")
async def run_job(job_name: str, engine: PushEngine = Depends(get_engine)):
    """Run one tick of a job now."""
    if job_name not in engine.job_table:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job '{job_name}'"
        )

    try:
        metrics = await engine.scheduler.run_now(job_name)
        return {"success": True, "metrics": metrics}
    except NotificationJobError as e:
        logger.error("Manual job run failed", job_name=job_name, phase=e.phase, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/users/{user_id}")
async def send_to_user(
    user_id: str, payload: NotificationPayload, engine: PushEngine = Depends(get_engine)
):
    """Send a message to every device registered for a user."""
    try:
        result = await engine.manual.send_to_user(user_id, payload.to_message())
        return {"success": True, "result": result}
    except ManualSendError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DirectoryUnavailableError as e:
        logger.error("Directory unavailable for manual send", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Directory unavailable"
        )


@router.post("/devices")
async def send_to_device(
    request: DeviceNotificationRequest, engine: PushEngine = Depends(get_engine)
):
    """Send a message to one device of a user."""
    try:
        result = await engine.manual.send_to_device(
            request.user_id, request.token, request.to_message()
        )
        return {"success": True, "result": result}
    except ManualSendError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DirectoryUnavailableError as e:
        logger.error(
            "Directory unavailable for manual send", user_id=request.user_id, error=str(e)
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Directory unavailable"
        )


@router.post("/broadcast")
async def broadcast(payload: NotificationPayload, engine: PushEngine = Depends(get_engine)):
    """Send a message to every unique registered device."""
    try:
        result = await engine.manual.broadcast(payload.to_message())
        return {"success": True, "result": result}
    except ManualSendError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DirectoryUnavailableError as e:
        logger.error("Directory unavailable for broadcast", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Directory unavailable"
        )
