"""Command runner - re-runs or polls shell commands with retry/wait policies"""

import logging
import subprocess
from typing import Callable, List, Optional, Sequence

from flakeguard.domain.models.policy import RetryPolicy
from flakeguard.domain.models.wait_spec import WaitSpec
from flakeguard.infrastructure.poller import Poller
from flakeguard.infrastructure.retry import Retrier

logger = logging.getLogger(__name__)


class CommandFailed(Exception):
    """A command exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command {' '.join(self.command)!r} exited with status {returncode}"
        if stderr.strip():
            message += f": {stderr.strip().splitlines()[-1]}"
        super().__init__(message)


# Failures worth running the command again for. A missing executable is not.
RETRYABLE_COMMAND_FAILURES = (CommandFailed, subprocess.TimeoutExpired)


class CommandRunner:
    """Runs external commands (readiness probes, setup scripts) for a test run"""

    def __init__(
        self,
        retrier: Optional[Retrier] = None,
        poller: Optional[Poller] = None,
        command_timeout: Optional[float] = None,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        """Initialize command runner

        Args:
            retrier: Retrier used by run_with_retry
            poller: Poller used by wait_until_succeeds
            command_timeout: Per-invocation timeout in seconds (None = no limit)
            run: subprocess.run compatible callable
        """
        self.retrier = retrier or Retrier()
        self.poller = poller or Poller()
        self.command_timeout = command_timeout
        self._run = run

    def run_once(self, command: Sequence[str]) -> subprocess.CompletedProcess:
        """Run ``command`` once

        Raises:
            CommandFailed: Non-zero exit status
            subprocess.TimeoutExpired: Command ran longer than command_timeout
            OSError: Command could not be started
        """
        argv: List[str] = list(command)
        logger.debug(f"Running: {' '.join(argv)}")
        completed = self._run(
            argv,
            capture_output=True,
            text=True,
            timeout=self.command_timeout,
            check=False,
        )
        if completed.returncode != 0:
            raise CommandFailed(argv, completed.returncode, completed.stderr or "")
        return completed

    def run_with_retry(self, command: Sequence[str], policy: RetryPolicy) -> subprocess.CompletedProcess:
        """Run ``command`` until it exits 0 or the policy gives up.

        Unless the policy names its own retryable kinds, only non-zero exits
        and per-invocation timeouts are retried.
        """
        if policy.retryable_failure_kinds is None:
            policy = policy.with_options(retryable_failure_kinds=RETRYABLE_COMMAND_FAILURES)
        return self.retrier.execute(lambda: self.run_once(command), policy)

    def succeeds(self, command: Sequence[str]) -> bool:
        """Check whether ``command`` currently exits 0."""
        try:
            self.run_once(command)
        except RETRYABLE_COMMAND_FAILURES as e:
            logger.debug(f"Probe not ready: {e}")
            return False
        return True

    def wait_until_succeeds(self, command: Sequence[str], spec: WaitSpec) -> None:
        """Poll ``command`` until it exits 0 or ``spec.timeout`` elapses."""
        self.poller.wait_until(lambda: self.succeeds(command), spec)
