from carealarm.shared.schemas import CamelModel


class PollingStatusResponse(CamelModel):
    caregiver_id: str
    active: bool


class PollingCheckResponse(CamelModel):
    caregiver_id: str
    shown: int
