"""Base model with camelCase serialization for wire and storage payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for every model the client sees: accepts snake_case or camelCase, emits camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """camelCase JSON-ready dict with unset optionals dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
