from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Protocol


class Timer(Protocol):
    """Recurring-job primitive the scheduler and monitor are built on.

    Implementations must never run one job id concurrently with itself.
    """

    def every(self, job_id: str, minutes: int, func: Callable[[], None]) -> None: ...
    def daily(self, job_id: str, hour: int, minute: int, tz: str, func: Callable[[], None]) -> None: ...
    def cancel(self, job_id: str) -> bool: ...
    def next_run(self, job_id: str) -> Optional[datetime]: ...
    def start(self) -> None: ...
    def shutdown(self) -> None: ...
