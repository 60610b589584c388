"""AttemptOutcome model - what happened on one attempt of a retry sequence"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AttemptOutcome:
    """Outcome of a single attempt, reported to observers and logs"""

    attempt: int  # 1-based
    elapsed: float  # Seconds since the sequence started
    succeeded: bool
    failure: Optional[BaseException] = None

    @property
    def failure_kind(self) -> Optional[str]:
        """Name of the failure type, if the attempt failed"""
        return type(self.failure).__name__ if self.failure is not None else None
