"""Value types describing retries and waits"""

from flakeguard.domain.models.attempt import AttemptOutcome
from flakeguard.domain.models.policy import RetryPolicy
from flakeguard.domain.models.wait_spec import WaitSpec

__all__ = ["AttemptOutcome", "RetryPolicy", "WaitSpec"]
