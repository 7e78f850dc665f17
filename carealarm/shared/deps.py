from fastapi import Header, HTTPException, Request, status

from carealarm.modules.notifications.service import NotificationService

USER_ID_HEADER = "X-User-ID"


def get_notification_service(request: Request) -> NotificationService:
    service: NotificationService | None = getattr(request.app.state, "notification_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification service is not running",
        )
    return service


async def get_current_user_id(
    user_id: str | None = Header(default=None, alias=USER_ID_HEADER),
) -> str:
    """The calling device's user id; sign-in happens upstream of this service."""
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"{USER_ID_HEADER} header required",
        )
    return user_id
