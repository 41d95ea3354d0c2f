from __future__ import annotations

from typing import Any, Iterable, Mapping, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class GraphBaseModel(BaseModel):
    """Immutable view over a Microsoft Graph JSON object.

    Field names are snake_case with the Graph camelCase spelling as alias, so
    models accept either form and always serialise back to the wire spelling.
    Unknown properties are dropped; Graph adds fields without notice.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def from_graph(cls, payload: Mapping[str, Any]) -> Self:
        return cls.model_validate(dict(payload))

    @classmethod
    def from_graph_items(
        cls, payloads: Iterable[Mapping[str, Any]]
    ) -> tuple[list[Self], list[ValidationError]]:
        """Parse a collection page, keeping readable items and the failures apart."""

        parsed: list[Self] = []
        errors: list[ValidationError] = []
        for payload in payloads:
            try:
                parsed.append(cls.from_graph(payload))
            except ValidationError as exc:
                errors.append(exc)
        return parsed, errors

    def to_graph(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GraphResource(GraphBaseModel):
    """A Graph entity addressed by its ``id``."""

    id: str = Field(min_length=1)
