from typing import List

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from carealarm.modules.alarms.records import DoseEvent
from carealarm.modules.alarms.schemas import (
    AlarmPlanResponse,
    AttemptResponse,
    CancelledResponse,
    MarkTakenRequest,
    ScheduleAlarmsRequest,
)
from carealarm.modules.notifications.service import NotificationService
from carealarm.shared import deps

router = APIRouter(prefix="/alarms", tags=["alarms"])
log = structlog.get_logger()


@router.post(
    "",
    response_model=AlarmPlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Schedule follow-up reminders and the caregiver check for a dose",
)
async def schedule_alarms(
    payload: ScheduleAlarmsRequest,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> AlarmPlanResponse:
    if payload.patient_id != current_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Alarms can only be scheduled for the calling patient",
        )
    dose = DoseEvent(
        alarm_id=payload.alarm_id,
        patient_id=payload.patient_id,
        medication_schedule_id=payload.medication_schedule_id,
        medication_name=payload.medication_name,
        scheduled_time=payload.scheduled_time,
    )
    plan = await service.sequencer.schedule(dose, accelerated=payload.accelerated)
    return AlarmPlanResponse.from_plan(plan)


@router.post(
    "/{medication_schedule_id}/taken",
    response_model=CancelledResponse,
    summary="Mark a dose taken and cancel its pending reminders",
)
async def mark_taken(
    medication_schedule_id: str,
    payload: MarkTakenRequest | None = None,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> CancelledResponse:
    payload = payload or MarkTakenRequest()
    cancelled = await service.sequencer.mark_taken(
        medication_schedule_id,
        taken_at=payload.taken_at,
        patient_id=current_user_id,
        medication_id=payload.medication_id,
        scheduled_time=payload.scheduled_time,
    )
    return CancelledResponse(medication_schedule_id=medication_schedule_id, cancelled=cancelled)


@router.delete(
    "/{medication_schedule_id}",
    response_model=CancelledResponse,
    summary="Cancel pending reminders for a schedule",
)
async def cancel_alarms(
    medication_schedule_id: str,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> CancelledResponse:
    cancelled = await service.sequencer.cancel(medication_schedule_id)
    log.info(
        "alarms_cancelled_by_request",
        medication_schedule_id=medication_schedule_id,
        user_id=current_user_id,
        cancelled=cancelled,
    )
    return CancelledResponse(medication_schedule_id=medication_schedule_id, cancelled=cancelled)


@router.get(
    "/{medication_schedule_id}/attempts",
    response_model=List[AttemptResponse],
    summary="List logged reminder attempts for a schedule",
)
async def list_attempts(
    medication_schedule_id: str,
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> List[AttemptResponse]:
    records = await service.alarms.list_attempts(medication_schedule_id)
    return [AttemptResponse.from_record(record) for record in records]
