"""Status notifications from the pipeline to whatever front end is attached."""

from __future__ import annotations

from abc import ABC, abstractmethod


class StatusNotifier(ABC):
    """Receives short human-readable status updates ("saving memories...").

    Injected into the orchestrator; implementations must not raise.
    """

    @abstractmethod
    def status(self, session_id: str, text: str) -> None: ...


class NullNotifier(StatusNotifier):
    def status(self, session_id: str, text: str) -> None:
        return None
