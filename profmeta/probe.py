"""Health and readiness status of a component, in gRPC health check terms."""

from __future__ import annotations

import enum
import threading


class ServingStatus(enum.IntEnum):
    """Status reported by a gRPC health check."""

    UNKNOWN = 0
    SERVING = 1
    NOT_SERVING = 2
    SERVICE_UNKNOWN = 3


class GRPCProbe:
    """Liveness and readiness of a component, kept as gRPC health server status.

    Not ready is reported until ready() is called. While not healthy, the
    status stays NOT_SERVING and readiness changes are ignored.
    """

    _SERVICE = ""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._statuses: dict[str, ServingStatus] = {self._SERVICE: ServingStatus.NOT_SERVING}
        self._shut_down = False

    def _set(self, status: ServingStatus) -> None:
        with self._lock:
            if self._shut_down:
                return
            self._statuses[self._SERVICE] = status

    def ready(self) -> None:
        """Mark the component ready."""
        self._set(ServingStatus.SERVING)

    def not_ready(self, err: BaseException | None = None) -> None:
        """Mark the component not ready."""
        self._set(ServingStatus.NOT_SERVING)

    def healthy(self) -> None:
        """Mark the component healthy; every service reports SERVING again."""
        with self._lock:
            self._shut_down = False
            for service in self._statuses:
                self._statuses[service] = ServingStatus.SERVING

    def not_healthy(self, err: BaseException | None = None) -> None:
        """Mark the component not healthy; every service reports NOT_SERVING."""
        with self._lock:
            self._shut_down = True
            for service in self._statuses:
                self._statuses[service] = ServingStatus.NOT_SERVING

    def check(self) -> ServingStatus:
        """Return the status a health check would report."""
        with self._lock:
            return self._statuses[self._SERVICE]