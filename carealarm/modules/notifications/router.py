"""Notification endpoints the mobile client calls, plus the device SSE stream."""

import asyncio
import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from carealarm.modules.notifications.payloads import (
    CaregiverAlertLocalPayload,
    CaregiverAlertPayload,
    NotificationPayload,
    parse_payload,
)
from carealarm.modules.notifications.schemas import (
    NotificationResponseRequest,
    NotificationResponseResult,
    PendingListResponse,
    PendingNotificationResponse,
    PushAddressResponse,
    PushTokenRequest,
    ReminderRequest,
    ReminderResponse,
)
from carealarm.modules.notifications.service import NotificationService
from carealarm.shared import deps

router = APIRouter(prefix="/notifications", tags=["notifications"])
log = structlog.get_logger()

STREAM_KEEPALIVE_SECONDS = 30.0


@router.get("/pending", response_model=PendingListResponse, summary="List pending deliveries")
async def list_pending(
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> PendingListResponse:
    pending = await service.scheduler.list_pending()
    items = [
        PendingNotificationResponse.from_notification(notification)
        for notification in pending
        if notification.owner_id in (None, current_user_id)
    ]
    items.sort(key=lambda item: item.fire_at)
    return PendingListResponse(items=items)


@router.post(
    "/reminders",
    response_model=ReminderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule a medication reminder",
)
async def schedule_reminder(
    payload: ReminderRequest,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> ReminderResponse:
    registration = await service.reminders.schedule_medication_reminder(
        current_user_id,
        payload.medication_name,
        payload.seconds,
        medication_id=payload.medication_id,
        schedule_time=payload.schedule_time,
    )
    return ReminderResponse.from_registration(registration)


async def _authorize_response(
    payload: NotificationPayload, user_id: str, service: NotificationService
) -> None:
    """Patients act on their own notifications; caregivers only on alerts for linked patients."""
    if isinstance(payload, (CaregiverAlertPayload, CaregiverAlertLocalPayload)):
        if payload.caregiver_id and payload.caregiver_id != user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Alert was addressed to another caregiver",
            )
        try:
            caregiver_ids = await service.caregivers.list_active_caregiver_ids(payload.patient_id)
        except Exception as exc:
            log.error("caregiver_lookup_failed", patient_id=payload.patient_id, error=str(exc))
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Could not verify caregiver access",
            ) from exc
        if user_id not in caregiver_ids:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Caller is not an active caregiver for this patient",
            )
        return

    patient_id = getattr(payload, "patient_id", None)
    if patient_id and patient_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Notification belongs to another patient",
        )


@router.post(
    "/response",
    response_model=NotificationResponseResult,
    summary="Handle a tap or action button on a delivered notification",
)
async def notification_response(
    payload: NotificationResponseRequest,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> NotificationResponseResult:
    try:
        parsed = parse_payload(payload.data)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Unrecognised notification payload",
        ) from exc
    await _authorize_response(parsed, current_user_id, service)

    outcome = await service.dispatcher.on_response(payload.data, payload.action)
    log.info("notification_response_handled", user_id=current_user_id, outcome=outcome)
    return NotificationResponseResult(outcome=outcome)


@router.post("/push-token", response_model=PushAddressResponse, summary="Register a device push token")
async def register_push_token(
    payload: PushTokenRequest,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> PushAddressResponse:
    address = await service.registration.register_device_token(current_user_id, payload.token)
    if address is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save push token",
        )
    return PushAddressResponse.from_address(address)


@router.post(
    "/push-token/placeholder",
    response_model=PushAddressResponse,
    summary="Register a development placeholder push token",
)
async def register_placeholder_token(
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> PushAddressResponse:
    address = await service.registration.register_placeholder(current_user_id)
    if address is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save placeholder token",
        )
    return PushAddressResponse.from_address(address)


@router.get("/stream")
async def stream_notifications(
    request: Request,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> StreamingResponse:
    """
    Server-Sent Events stream of notifications shown to the calling user.

    Each event is the JSON form of a delivered notification; a keepalive
    comment is sent when nothing arrives for 30 seconds.
    """
    streams = service.streams

    async def event_generator():
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=100)
        streams.subscribe(queue, current_user_id)
        log.info("device_stream_connected", user_id=current_user_id)
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    message = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                    yield f"data: {json.dumps(message)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            streams.unsubscribe(queue)
            log.info("device_stream_closed", user_id=current_user_id)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
