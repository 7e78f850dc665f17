from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from carealarm.core.config import settings
from carealarm.modules.alarms.models import AdministrationLog, AlarmAttempt
from carealarm.modules.caregivers.models import CaregiverAlert, CaregiverConnection, Profile
from carealarm.modules.notifications.models import NotificationSettings

MONGO_CLIENT: AsyncIOMotorClient | None = None


async def init_db() -> AsyncIOMotorClient:
    """
    Create a single Motor client, initialize Beanie, and return the client.

    This should be called exactly once at app startup.
    """
    global MONGO_CLIENT

    client = AsyncIOMotorClient(
        settings.MONGODB_URL,
        uuidRepresentation="standard",
        serverSelectionTimeoutMS=5000,
    )

    db: AsyncIOMotorDatabase = client[settings.MONGODB_DB_NAME]

    await init_beanie(
        database=db,
        document_models=[
            AlarmAttempt,
            AdministrationLog,
            NotificationSettings,
            CaregiverConnection,
            Profile,
            CaregiverAlert,
        ],
    )

    MONGO_CLIENT = client
    return client
