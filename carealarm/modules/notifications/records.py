from dataclasses import dataclass

# Development builds register tokens like ExponentPushToken[abcd1234-MOCK-1700000000000].
PLACEHOLDER_TOKEN_MARKER = "MOCK"


@dataclass
class PushAddress:
    owner_id: str
    token: str | None = None
    sound_enabled: bool = True
    vibration_enabled: bool = True

    @property
    def is_placeholder(self) -> bool:
        return bool(self.token) and PLACEHOLDER_TOKEN_MARKER in self.token
