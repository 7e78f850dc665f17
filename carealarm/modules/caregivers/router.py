from fastapi import APIRouter, Depends, HTTPException, status

from carealarm.modules.caregivers.schemas import PollingCheckResponse, PollingStatusResponse
from carealarm.modules.notifications.service import NotificationService
from carealarm.shared import deps

router = APIRouter(prefix="/caregivers/polling", tags=["caregivers"])


@router.post("/start", response_model=PollingStatusResponse, summary="Start alert polling")
async def start_polling(
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> PollingStatusResponse:
    if not await service.pollers.start(current_user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Alert polling is only available to caregivers",
        )
    return PollingStatusResponse(caregiver_id=current_user_id, active=True)


@router.post("/stop", response_model=PollingStatusResponse, summary="Stop alert polling")
async def stop_polling(
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> PollingStatusResponse:
    await service.pollers.stop(current_user_id)
    return PollingStatusResponse(caregiver_id=current_user_id, active=False)


@router.get("/status", response_model=PollingStatusResponse, summary="Alert polling status")
async def polling_status(
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> PollingStatusResponse:
    return PollingStatusResponse(
        caregiver_id=current_user_id,
        active=service.pollers.is_active(current_user_id),
    )


@router.post("/check", response_model=PollingCheckResponse, summary="Check for alerts now")
async def check_now(
    current_user_id: str = Depends(deps.get_current_user_id),
    service: NotificationService = Depends(deps.get_notification_service),
) -> PollingCheckResponse:
    """Run one poll immediately, e.g. when the app returns to the foreground."""
    if not service.pollers.is_active(current_user_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Alert polling is not active",
        )
    shown = await service.pollers.get(current_user_id).check_pending()
    return PollingCheckResponse(caregiver_id=current_user_id, shown=shown)
