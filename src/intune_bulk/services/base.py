from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from intune_bulk.data.models import AssignmentJob, JobStatus
from intune_bulk.utils import get_logger


logger = get_logger(__name__)

T_co = TypeVar("T_co", covariant=True)


class EventHook(Generic[T_co]):
    """Simple observer pattern helper for UI-friendly bridging."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[T_co], None]] = []

    def subscribe(self, callback: Callable[[T_co], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:  # pragma: no cover - best effort cleanup
                pass

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, payload: T_co) -> None:
        for callback in list(self._subscribers):
            try:
                callback(payload)
            except Exception:  # pragma: no cover - callbacks should not crash services
                logger.exception("Service event callback failed")


@dataclass(frozen=True, slots=True)
class JobChangeEvent:
    """Emitted by the job store whenever a job record is replaced."""

    job: AssignmentJob
    previous_status: JobStatus | None

    @property
    def batch_id(self) -> str:
        return self.job.batch_id

    @property
    def status(self) -> JobStatus:
        return self.job.status


__all__ = ["EventHook", "JobChangeEvent"]
