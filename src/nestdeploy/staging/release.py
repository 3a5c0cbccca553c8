"""Compensating release of staging artifacts."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from nestdeploy.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ReleaseAction:
    """One recorded compensating action."""

    description: str
    action: Callable[[], None]


@dataclass
class ReleaseReport:
    """Result of releasing everything an attempt staged."""

    released: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)  # description -> error
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        """Check if every release action succeeded."""
        return not self.failed

    def get_total_operations(self) -> int:
        """Get total number of release operations attempted."""
        return len(self.released) + len(self.failed)


class ReleaseStack:
    """Ordered release actions owned by a single attempt.

    Actions run in reverse registration order, so a staging container
    registered first is deleted after every object inside it. Failures are
    logged and recorded, never raised. Releasing twice returns the first
    report without running anything again.
    """

    def __init__(self):
        self._actions: List[ReleaseAction] = []
        self._lock = threading.Lock()
        self._report: Optional[ReleaseReport] = None

    def __len__(self) -> int:
        return len(self._actions)

    def __enter__(self) -> "ReleaseStack":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release_all()
        return False

    @property
    def released(self) -> bool:
        """Whether release_all has run."""
        return self._report is not None

    @property
    def pending(self) -> List[str]:
        """Descriptions of recorded actions, in registration order."""
        return [a.description for a in self._actions]

    def push(self, description: str, action: Callable[[], None]) -> None:
        """Record a release action.

        Raises:
            RuntimeError: If the stack has already been released
        """
        with self._lock:
            if self._report is not None:
                raise RuntimeError(f"Cannot record {description!r}: staging already released")
            self._actions.append(ReleaseAction(description, action))

    def release_all(self) -> ReleaseReport:
        """Run every recorded action, newest first.

        Returns:
            ReleaseReport with released and failed descriptions
        """
        with self._lock:
            if self._report is not None:
                return self._report

            report = ReleaseReport(start_time=datetime.now(timezone.utc))
            self._report = report

            if self._actions:
                logger.info(f"Releasing {len(self._actions)} staging artifact(s)...")

            for release in reversed(self._actions):
                try:
                    release.action()
                    report.released.append(release.description)
                    logger.debug(f"Released {release.description}")
                except Exception as e:
                    report.failed[release.description] = str(e)
                    logger.warning(f"Failed to release {release.description}: {e}")

            report.end_time = datetime.now(timezone.utc)
            report.duration = (report.end_time - report.start_time).total_seconds()

            if report.failed:
                logger.warning(
                    f"Release completed with failures: {len(report.failed)} of "
                    f"{report.get_total_operations()} action(s) failed"
                )
            elif report.released:
                logger.info(f"Released {len(report.released)} staging artifact(s) in {report.duration:.1f}s")

            return report
