"""Client facade bundling discovery, command building, transport, parsing and resilience."""

import asyncio
import logging
import weakref
from collections import deque
from pathlib import Path
from typing import Awaitable, Callable, Deque, List, Optional, Tuple, Union

from cli_agents.config import settings
from cli_agents.exceptions import InvalidArgumentError, NonZeroExitError, ParseError
from cli_agents.models.messages import ParsedMessage
from cli_agents.models.options import ExecuteOptions, OutputFormat
from cli_agents.models.result import ExecuteResult
from cli_agents.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitMetrics
from cli_agents.services.discovery import CliAvailability, CliDiscovery
from cli_agents.services.parser import ResponseParser, StreamingSession
from cli_agents.services.providers.base import BaseProvider, CommandSpec
from cli_agents.services.providers.registry import get_provider
from cli_agents.services.retry import RetryPolicy, with_retry
from cli_agents.services.transport import ProcessStream, ProcessTransport

logger = logging.getLogger(__name__)


class AgentClient:
    """
    Runs prompts against one agent CLI.

    The executable is resolved at construction (raising DiscoveryError if it
    cannot be found). A client is safe to share between concurrent tasks: each
    call spawns its own process, and only the circuit breaker is shared.

    Example:
        client = AgentClient("codex", options=ExecuteOptions(working_directory="/repo"))
        result = await client.execute("Add a unit test for parse_date")
        if result.successful:
            print(result.output)
    """

    def __init__(
        self,
        provider: Union[str, BaseProvider],
        options: Optional[ExecuteOptions] = None,
        executable_path: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[ProcessTransport] = None,
        discovery: Optional[CliDiscovery] = None,
    ):
        self.provider = get_provider(provider) if isinstance(provider, str) else provider
        self.default_options = options or ExecuteOptions()
        self.discovery = discovery or CliDiscovery(self.provider)
        self.executable = self.discovery.resolve(executable_path or self.default_options.executable_path)
        self.breaker = breaker or CircuitBreaker(
            self.provider.name, CircuitBreakerConfig.preset(settings.circuit_preset)
        )
        self.retry = retry or RetryPolicy.preset(settings.retry_preset)
        self.transport = transport or ProcessTransport()
        self.parser = ResponseParser(self.provider)

    def _validate(
        self,
        prompt: str,
        options: Optional[ExecuteOptions],
        session_id: Optional[str] = None
    ) -> ExecuteOptions:
        if not isinstance(prompt, str) or not prompt.strip():
            raise InvalidArgumentError("Prompt must not be empty")
        options = options or self.default_options
        if options.working_directory is not None and not Path(options.working_directory).is_dir():
            raise InvalidArgumentError(f"Working directory does not exist: {options.working_directory}")
        self.provider.validate_options(options)
        self.provider.check_resume(session_id)
        self.provider.resolve_format(options)
        return options

    async def _build(
        self,
        prompt: str,
        options: ExecuteOptions,
        session_id: Optional[str] = None
    ) -> CommandSpec:
        executable = self.executable
        if options.executable_path and options.executable_path != executable:
            # The version check is a blocking subprocess call
            executable = await asyncio.to_thread(self.discovery.resolve, options.executable_path)
        return self.provider.build_command(prompt, options, executable, session_id)

    def _open(self, spec: CommandSpec, options: ExecuteOptions) -> ProcessStream:
        return self.transport.stream(
            spec.argv,
            stdin=spec.stdin,
            cwd=self._cwd(options),
            env=self._env(spec, options),
            timeout=options.timeout,
            max_output_bytes=options.max_output_bytes,
        )

    def _env(self, spec: CommandSpec, options: ExecuteOptions) -> dict:
        return {**spec.env, **options.env}

    def _cwd(self, options: ExecuteOptions) -> Optional[str]:
        return str(options.working_directory) if options.working_directory else None

    async def execute(self, prompt: str, options: Optional[ExecuteOptions] = None) -> ExecuteResult:
        """
        Run the CLI to completion.

        Args:
            prompt: The goal to send
            options: Per-call options; the client's defaults when omitted

        Returns:
            ExecuteResult; check ``successful`` for the agent's verdict

        Raises:
            InvalidArgumentError: Bad prompt or options, nothing was spawned
            CircuitOpenError: The breaker rejected the call
            ProcessSpawnError, CliTimeoutError, NonZeroExitError, ParseError:
                Transport failures, after any configured retries
        """
        return await self._run(prompt, options)

    async def resume(
        self,
        session_id: str,
        prompt: str,
        options: Optional[ExecuteOptions] = None
    ) -> ExecuteResult:
        """Continue an earlier session. Raises InvalidArgumentError if unsupported."""
        return await self._run(prompt, options, session_id)

    async def _run(
        self,
        prompt: str,
        options: Optional[ExecuteOptions],
        session_id: Optional[str] = None
    ) -> ExecuteResult:
        options = self._validate(prompt, options, session_id)
        spec = await self._build(prompt, options, session_id)

        async def attempt() -> ExecuteResult:
            return await self.breaker.call(self._execute_once, spec, options)

        return await with_retry(attempt, self.retry, label=f"{self.provider.name} execute")

    async def _execute_once(self, spec: CommandSpec, options: ExecuteOptions) -> ExecuteResult:
        try:
            output = await self.transport.execute(
                spec.argv,
                stdin=spec.stdin,
                cwd=self._cwd(options),
                env=self._env(spec, options),
                timeout=options.timeout,
                max_output_bytes=options.max_output_bytes,
            )
            return self.parser.build_result(output, spec, options)
        finally:
            self.provider.cleanup(spec)

    def execute_sync(self, prompt: str, options: Optional[ExecuteOptions] = None) -> ExecuteResult:
        """Blocking wrapper around :meth:`execute` for code without an event loop."""
        return asyncio.run(self.execute(prompt, options))

    def stream(
        self,
        prompt: str,
        options: Optional[ExecuteOptions] = None,
        session_id: Optional[str] = None
    ) -> "MessageStream":
        """
        Start a run and yield its messages as they arrive.

        Argument errors are raised here. A per-call executable override is
        resolved, and the process spawned, on entry or first iteration.
        Streams are not retried.
        """
        options = self._validate(prompt, options, session_id)

        async def launch() -> Tuple[CommandSpec, ProcessStream]:
            spec = await self._build(prompt, options, session_id)
            return spec, self._open(spec, options)

        return MessageStream(launch, options, self.parser, self.breaker)

    def is_available(self) -> bool:
        """Re-run the version probe against the resolved executable."""
        return self.discovery.probe(self.executable) is not None

    def check_availability(self) -> CliAvailability:
        version = self.discovery.probe(self.executable)
        if version is None:
            return CliAvailability(
                available=False,
                path=self.executable,
                reason=f"{self.executable} failed the version probe",
            )
        return CliAvailability(available=True, path=self.executable, version=version or None)

    def circuit_metrics(self) -> CircuitMetrics:
        return self.breaker.metrics()


class MessageStream:
    """
    Async iterator of ParsedMessage for one run.

    ``stream-json`` output is delivered line by line; text and single-document
    JSON output are parsed when the process exits. Closing the stream early,
    cancelling the consumer, or dropping the stream kills the process. A JSON
    stream that ends without a result message raises IncompleteStreamError.
    """

    def __init__(
        self,
        launch: Callable[[], Awaitable[Tuple[CommandSpec, ProcessStream]]],
        options: ExecuteOptions,
        parser: ResponseParser,
        breaker: CircuitBreaker,
    ):
        self._launch = launch
        self._process: Optional[ProcessStream] = None
        self._spec: Optional[CommandSpec] = None
        self._options = options
        self._parser = parser
        self._breaker = breaker

        self.session = StreamingSession()
        self._pending: Deque[ParsedMessage] = deque()
        self._stdout: List[str] = []
        self._first_line = True
        self._started = False
        self._exhausted = False
        self._cancelled = False
        self._settled = False
        self._release_trial: Optional[weakref.finalize] = None
        self._cleanup: Optional[weakref.finalize] = None
        self._result: Optional[ExecuteResult] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    async def _start(self) -> None:
        if self._started:
            return
        self._started = True
        if self._breaker.acquire():
            # A dropped stream must not keep the HALF_OPEN trial slot forever
            self._release_trial = weakref.finalize(self, self._breaker.release)
        try:
            self._spec, self._process = await self._launch()
            self._cleanup = weakref.finalize(self, self._parser.provider.cleanup, self._spec)
            await self._process.start()
        except self._breaker.counted_exceptions:
            self._settle(success=False)
            raise
        except BaseException:
            self._abandon()
            raise

    def _settle(self, success: bool) -> None:
        self._remove_artifacts()
        if self._settled:
            return
        self._settled = True
        if self._release_trial is not None:
            self._release_trial.detach()
        if success:
            self._breaker.record_success()
        else:
            self._breaker.record_failure()

    def _abandon(self) -> None:
        self._remove_artifacts()
        if self._settled:
            return
        self._settled = True
        if self._release_trial is not None:
            self._release_trial()

    def _remove_artifacts(self) -> None:
        if self._cleanup is not None:
            self._cleanup()

    def __aiter__(self) -> "MessageStream":
        return self

    async def __anext__(self) -> ParsedMessage:
        await self._start()
        while not self._pending:
            if self._exhausted:
                raise StopAsyncIteration
            try:
                line = await self._process.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                await self._complete()
                continue
            except asyncio.CancelledError:
                self._cancelled = True
                self._abandon()
                raise
            except self._breaker.counted_exceptions:
                self._settle(success=False)
                raise

            self._stdout.append(line)
            if self._spec.output_format == OutputFormat.STREAM_JSON:
                await self._decode(line)
        return self._pending.popleft()

    async def _decode(self, line: str) -> None:
        if not line.strip():
            return
        try:
            messages = self._parser.parse_line(line, first=self._first_line)
        except ParseError:
            self.session.fail()
            await self._process.aclose()
            self._settle(success=False)
            raise
        self._first_line = False
        self._push(messages)

    def _push(self, messages: List[ParsedMessage]) -> None:
        for message in messages:
            self.session.feed(message)
            self._pending.append(message)

    async def _complete(self) -> None:
        exit_code = self._process.exit_code
        stderr = self._process.stderr
        stdout = "\n".join(self._stdout)
        output_format = self._spec.output_format

        if output_format != OutputFormat.STREAM_JSON:
            try:
                self._push(self._parser.parse(stdout, output_format, self._spec))
            except ParseError:
                if exit_code == 0:
                    self._settle(success=False)
                    raise
                logger.warning("Ignoring unparseable output of failed run")

        if exit_code != 0 and not self.session.messages and not stderr.strip():
            self._settle(success=False)
            raise NonZeroExitError(exit_code, stdout, stderr)

        if output_format != OutputFormat.STREAM_JSON:
            closing = self._parser.with_terminal_result(
                self.session.messages, output_format, exit_code, stderr, self._process.duration
            )
            self._push(closing[len(self.session.messages):])

        try:
            self.session.finish()
        except ParseError:
            self._settle(success=False)
            raise

        self._settle(success=True)
        self._result = self._parser.assemble(
            self.session.messages,
            output_format,
            self._options,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=self._process.duration,
        )

    def result(self) -> ExecuteResult:
        """
        The assembled result once the stream is exhausted or closed.

        Raises:
            RuntimeError: The stream is still running
        """
        if self._result is not None:
            return self._result
        if self._cancelled and self._process is not None:
            return self._parser.assemble(
                self.session.messages,
                self._spec.output_format,
                self._options,
                exit_code=self._process.exit_code if self._process.exit_code is not None else -1,
                stdout="\n".join(self._stdout),
                stderr=self._process.stderr,
                duration=self._process.duration,
                cancelled=True,
            )
        raise RuntimeError("Stream has not finished")

    async def aclose(self) -> None:
        if self._process is None:
            # Never launched; later iteration must not spawn it
            self._started = True
            self._exhausted = True
            return
        if self._exhausted:
            return
        self._cancelled = True
        await self._process.aclose()
        self._abandon()

    async def __aenter__(self) -> "MessageStream":
        await self._start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def create_client(provider: str, **kwargs) -> AgentClient:
    """Build a client for a provider name such as ``"claude"`` or ``"amazon-q"``."""
    return AgentClient(provider, **kwargs)
