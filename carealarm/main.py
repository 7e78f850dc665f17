from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from carealarm.core.config import settings
from carealarm.core.db import init_db
from carealarm.core.logging import setup_logging
from carealarm.core.middleware import StructlogMiddleware
from carealarm.modules.alarms import router as alarms_router
from carealarm.modules.caregivers import router as caregivers_router
from carealarm.modules.notifications import router as notifications_router
from carealarm.modules.notifications.service import NotificationService

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    mongo_client = await init_db()
    service = NotificationService()
    await service.start()
    app.state.mongo_client = mongo_client
    app.state.notification_service = service

    yield

    # Shutdown
    await service.stop()
    mongo_client.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    ## Care Alarm API

    Medication alarm escalation for Parkinson's care:
    * **Alarms**: follow-up reminders and the caregiver check for a missed dose
    * **Notifications**: reminders, notification responses, push tokens, device stream
    * **Caregivers**: polling for stored alerts when push delivery failed

    Callers identify themselves with the `X-User-ID` header.
    """,
    version="0.1.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(StructlogMiddleware)

app.include_router(alarms_router.router, prefix=settings.API_V1_STR)
app.include_router(notifications_router.router, prefix=settings.API_V1_STR)
app.include_router(caregivers_router.router, prefix=settings.API_V1_STR)


@app.get("/health")
def health_check() -> dict[str, str]:
    return {"status": "ok"}
