from datetime import datetime
from typing import List

from beanie import PydanticObjectId
from beanie.operators import Or, Set

from carealarm.modules.caregivers.models import CaregiverAlert, CaregiverConnection, Profile
from carealarm.modules.caregivers.records import StoredAlertRecord
from carealarm.shared.constants import AlertKind, ConnectionStatus, Role


class CaregiverRepository:
    """Connections, profiles and fallback alert rows."""

    async def list_active_caregiver_ids(self, patient_id: str) -> List[str]:
        links = await CaregiverConnection.find(
            CaregiverConnection.patient_id == patient_id,
            CaregiverConnection.connection_status == ConnectionStatus.ACTIVE,
        ).to_list()
        # Preserve order, drop duplicate edges.
        return list(dict.fromkeys(link.caregiver_id for link in links))

    async def get_display_name(self, user_id: str) -> str | None:
        profile = await Profile.find_one(Profile.user_id == user_id)
        if not profile:
            return None
        parts = [part for part in (profile.first_name, profile.last_name) if part]
        return " ".join(parts) or None

    async def get_role(self, user_id: str) -> Role | None:
        profile = await Profile.find_one(Profile.user_id == user_id)
        return profile.role if profile else None

    async def store_alert(self, record: StoredAlertRecord) -> StoredAlertRecord:
        row = CaregiverAlert(
            patient_id=record.patient_id,
            caregiver_id=record.caregiver_id,
            medication_schedule_id=record.medication_schedule_id,
            alert_type=record.kind,
            alert_message=record.message,
        )
        await row.insert()
        record.id = str(row.id)
        record.created_at = row.created_at
        return record

    async def list_unacknowledged(
        self, caregiver_id: str, limit: int, fallback_kinds_only: bool = True
    ) -> List[StoredAlertRecord]:
        query = CaregiverAlert.find(
            CaregiverAlert.caregiver_id == caregiver_id,
            CaregiverAlert.acknowledged == False,  # noqa: E712
        )
        if fallback_kinds_only:
            # Older rows may have no alert_type at all.
            query = query.find(
                Or(
                    CaregiverAlert.alert_type == AlertKind.MEDICATION_MISSED_LOCAL,
                    CaregiverAlert.alert_type == None,  # noqa: E711
                )
            )
        rows = await query.sort("-created_at").limit(limit).to_list()
        return [self._to_record(row) for row in rows]

    async def acknowledge(self, alert_id: str, acknowledged_at: datetime) -> None:
        row = await CaregiverAlert.get(PydanticObjectId(alert_id))
        if row is None:
            raise LookupError(f"caregiver alert {alert_id} not found")
        row.acknowledged = True
        row.acknowledged_at = acknowledged_at
        await row.save()

    async def acknowledge_for_schedule(
        self, medication_schedule_id: str, acknowledged_at: datetime
    ) -> int:
        result = await CaregiverAlert.find(
            CaregiverAlert.medication_schedule_id == medication_schedule_id,
            CaregiverAlert.acknowledged == False,  # noqa: E712
        ).update(
            Set(
                {
                    CaregiverAlert.acknowledged: True,
                    CaregiverAlert.acknowledged_at: acknowledged_at,
                }
            )
        )
        return getattr(result, "modified_count", 0)

    @staticmethod
    def _to_record(row: CaregiverAlert) -> StoredAlertRecord:
        return StoredAlertRecord(
            id=str(row.id),
            patient_id=row.patient_id,
            caregiver_id=row.caregiver_id,
            message=row.alert_message,
            kind=row.alert_type,
            medication_schedule_id=row.medication_schedule_id,
            acknowledged=row.acknowledged,
            acknowledged_at=row.acknowledged_at,
            created_at=row.created_at,
        )
