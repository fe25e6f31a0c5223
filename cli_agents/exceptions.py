"""
Exceptions raised while driving agent CLIs.

Exception Hierarchy:
    AgentCliError (base)
    ├── DiscoveryError - executable not found or not functional
    ├── InvalidArgumentError - malformed prompt or options, raised before spawning
    ├── ProcessSpawnError - OS refused to start the process
    ├── CliTimeoutError - deadline exceeded, process tree killed
    ├── NonZeroExitError - process exited non-zero without usable output
    ├── ParseError - output does not decode per the declared format
    │   └── IncompleteStreamError - stream ended without a result message
    └── CircuitOpenError - call rejected by an open circuit breaker

Transport failures (spawn, timeout, non-zero exit, parse) are counted by the
circuit breaker; discovery and argument errors are not.
"""

from typing import Optional, Sequence


class AgentCliError(Exception):
    """
    Base exception for all agent CLI errors.

    Example:
        try:
            result = await client.execute("Fix the failing test")
        except AgentCliError as e:
            logger.error(f"Agent run failed: {e}")
    """

    pass


class DiscoveryError(AgentCliError):
    """
    Raised when no candidate executable resolves and passes the version probe.

    Attributes:
        provider: Provider name the lookup was for.
        candidates: Every path that was tried, in order.
    """

    def __init__(self, provider: str, candidates: Sequence[str] = (), message: Optional[str] = None):
        self.provider = provider
        self.candidates = list(candidates)
        if message is None:
            message = f"{provider} CLI not found"
            if self.candidates:
                message += f" (tried: {', '.join(self.candidates)})"
        super().__init__(message)


class InvalidArgumentError(AgentCliError, ValueError):
    """Raised for an empty prompt, a non-positive timeout or other bad options."""

    pass


class ProcessSpawnError(AgentCliError):
    """
    Raised when the OS fails to start the CLI process.

    Attributes:
        executable: The argv[0] that failed to start.
    """

    def __init__(self, executable: str, reason: str):
        self.executable = executable
        super().__init__(f"Failed to start {executable}: {reason}")


class CliTimeoutError(AgentCliError, TimeoutError):
    """
    Raised when a CLI process exceeds its deadline.

    The process tree has already been killed when this is raised.

    Attributes:
        timeout: The deadline in seconds.
        stdout: Output captured before the kill.
        stderr: Error output captured before the kill.
    """

    def __init__(self, timeout: float, stdout: str = "", stderr: str = ""):
        self.timeout = timeout
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"CLI process timed out after {timeout:g}s")


class NonZeroExitError(AgentCliError):
    """
    Raised when a process exits non-zero and produced nothing usable.

    Attributes:
        exit_code: Process exit status.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    def __init__(self, exit_code: int, stdout: str = "", stderr: str = ""):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"CLI process exited with code {exit_code}")


class ParseError(AgentCliError):
    """
    Raised when output cannot be decoded per the declared output format.

    Attributes:
        line: The offending line or document, truncated for logging.
    """

    def __init__(self, message: str, line: Optional[str] = None):
        self.line = line[:200] if line else line
        super().__init__(message)


class IncompleteStreamError(ParseError):
    """Raised when a streaming session ends before its result message."""

    def __init__(self, message: str = "Stream ended without a result message"):
        super().__init__(message)


class CircuitOpenError(AgentCliError):
    """
    Raised when a call is rejected because the circuit breaker is open.

    The transport is never invoked when this is raised.

    Attributes:
        breaker_name: Name of the rejecting breaker.
        retry_after: Seconds until the breaker admits a trial call.
    """

    def __init__(self, breaker_name: str, retry_after: float = 0.0):
        self.breaker_name = breaker_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{breaker_name}' is open; retry after {retry_after:.1f}s"
        )
