from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal, Sequence
from urllib.parse import urlencode


GraphMethod = Literal["GET", "POST", "PATCH", "DELETE", "PUT"]
WRITE_METHODS = frozenset({"POST", "PATCH", "PUT", "DELETE"})
_BODY_METHODS = frozenset({"POST", "PATCH", "PUT"})

MOBILE_APPS_PATH = "/deviceAppManagement/mobileApps"


@dataclass(slots=True)
class GraphRequest:
    """One Graph call, sent on its own or as an entry of a ``/$batch`` payload."""

    method: GraphMethod
    url: str
    request_id: str | None = None
    headers: dict[str, str] | None = None
    body: Any | None = None
    params: dict[str, Any] | None = None
    depends_on: Sequence[str] | None = None

    @property
    def is_write(self) -> bool:
        return self.method in WRITE_METHODS

    @property
    def relative_url(self) -> str:
        """Path plus encoded query, in the form ``/$batch`` entries expect."""

        url = self.url if self.url.startswith("/") else f"/{self.url}"
        if not self.params:
            return url
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{urlencode(self.params, doseq=True)}"

    def to_batch_entry(self, fallback_id: str) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "id": self.request_id or fallback_id,
            "method": self.method,
            "url": self.relative_url,
        }
        if self.headers:
            entry["headers"] = dict(self.headers)
        if self.body is not None and self.method in _BODY_METHODS:
            entry["body"] = self.body
        if self.depends_on:
            entry["dependsOn"] = list(self.depends_on)
        return entry


def build_batch_requests(requests: Iterable[GraphRequest]) -> list[dict[str, Any]]:
    """Render batch entries, numbering requests that carry no id of their own.

    Raises ``ValueError`` when two entries end up with the same id, since Graph
    correlates responses by id only.
    """

    entries = [
        request.to_batch_entry(str(index))
        for index, request in enumerate(requests, start=1)
    ]
    seen: set[str] = set()
    for entry in entries:
        if entry["id"] in seen:
            raise ValueError(f"Duplicate batch request id {entry['id']!r}")
        seen.add(entry["id"])
    return entries


def assignments_path(app_id: str) -> str:
    return f"{MOBILE_APPS_PATH}/{app_id}/assignments"


def mobile_app_assignments_request(
    app_id: str,
    *,
    params: dict[str, Any] | None = None,
) -> GraphRequest:
    """Fetch the assignments collection for a given mobile app."""

    return GraphRequest(method="GET", url=assignments_path(app_id), params=params)


def mobile_app_assignment_create_request(
    app_id: str,
    payload: dict[str, Any],
    *,
    request_id: str | None = None,
) -> GraphRequest:
    # POST to the collection adds one assignment; /assign would replace them all.
    return GraphRequest(
        method="POST",
        url=assignments_path(app_id),
        body=payload,
        request_id=request_id,
        headers={"Content-Type": "application/json"},
    )


__all__ = [
    "GraphMethod",
    "GraphRequest",
    "MOBILE_APPS_PATH",
    "WRITE_METHODS",
    "assignments_path",
    "build_batch_requests",
    "mobile_app_assignment_create_request",
    "mobile_app_assignments_request",
]
