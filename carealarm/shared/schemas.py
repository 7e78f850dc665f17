from pydantic import BaseModel, ConfigDict


def to_camel(value: str) -> str:
    """Convert snake_case field names to the lowerCamelCase the mobile client sends."""
    if "_" not in value:
        return value
    head, *tail = value.split("_")
    return head + "".join(word.capitalize() for word in tail if word)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_payload(self) -> dict:
        """Dump with camelCase keys and JSON-safe values, dropping unset optionals."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
