"""Turn raw CLI output into typed messages and results."""

import json
import logging
from enum import Enum
from typing import Iterable, List, Optional

from cli_agents.exceptions import IncompleteStreamError, NonZeroExitError, ParseError
from cli_agents.models.messages import (
    AssistantMessage,
    ParsedMessage,
    ResultMessage,
    SystemMessage,
)
from cli_agents.models.options import ExecuteOptions, OutputFormat
from cli_agents.models.result import ExecuteResult, ResultStatus
from cli_agents.models.usage import Cost, Metadata, Usage
from cli_agents.services.providers.base import BaseProvider, CommandSpec
from cli_agents.services.transport import ProcessOutput

logger = logging.getLogger(__name__)

# What a provider translator raises on a record of the wrong shape
MALFORMED_RECORD_ERRORS = (ValueError, TypeError, AttributeError, KeyError)


class SessionState(str, Enum):
    STARTED = "started"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    ERROR = "error"


class StreamingSession:
    """
    Tracks one session's message sequence.

    STARTED -> RECEIVING* -> COMPLETED once a result message arrives, or ERROR
    if the stream fails or ends without one.
    """

    def __init__(self):
        self.state = SessionState.STARTED
        self.session_id: Optional[str] = None
        self.model: Optional[str] = None
        self.result: Optional[ResultMessage] = None
        self.messages: List[ParsedMessage] = []

    @property
    def is_complete(self) -> bool:
        return self.state == SessionState.COMPLETED

    def feed(self, message: ParsedMessage) -> None:
        if self.state == SessionState.COMPLETED:
            logger.warning(f"Received {message.kind} message after the result message")
        self.messages.append(message)

        if isinstance(message, SystemMessage):
            if message.session_id and self.session_id is None:
                self.session_id = message.session_id
            self.model = self.model or message.model
        elif isinstance(message, AssistantMessage):
            self.model = self.model or message.model

        if isinstance(message, ResultMessage):
            if message.session_id:
                if self.session_id and message.session_id != self.session_id:
                    logger.warning(
                        f"Result session id {message.session_id} does not match init session id {self.session_id}"
                    )
                self.session_id = self.session_id or message.session_id
            self.result = message
            self.state = SessionState.COMPLETED
        elif self.state == SessionState.STARTED:
            self.state = SessionState.RECEIVING

    def fail(self) -> None:
        self.state = SessionState.ERROR

    def finish(self) -> None:
        """
        Close the session at end of stream.

        Raises:
            IncompleteStreamError: No result message was seen
        """
        if self.state != SessionState.COMPLETED:
            self.state = SessionState.ERROR
            raise IncompleteStreamError()


class ResponseParser:
    """Parses text, single-document JSON and JSON-lines output for one provider."""

    def __init__(self, provider: BaseProvider):
        self.provider = provider

    def parse(self, raw: str, output_format: OutputFormat, spec: Optional[CommandSpec] = None) -> List[ParsedMessage]:
        """
        Parse complete stdout into an ordered message list.

        Raises:
            ParseError: A JSON document, or the first line of a JSON stream, is malformed
        """
        if output_format == OutputFormat.TEXT:
            return self.provider.translate_text(raw, spec or CommandSpec(argv=[]))
        if output_format == OutputFormat.JSON:
            return self.parse_document(raw)
        return self.parse_lines(raw.splitlines())

    def parse_document(self, raw: str) -> List[ParsedMessage]:
        text = raw.strip()
        if not text:
            raise ParseError("Expected a JSON document but output was empty")

        try:
            document = json.loads(text)
        except json.JSONDecodeError:
            # Some CLIs print warnings ahead of the document
            try:
                document = json.loads(text.splitlines()[-1])
            except json.JSONDecodeError as e:
                raise ParseError(f"Output is not valid JSON: {e}", line=text) from e

        if not isinstance(document, dict):
            raise ParseError("Expected a JSON object", line=text)
        try:
            return self.provider.translate_document(document)
        except MALFORMED_RECORD_ERRORS as e:
            raise ParseError(str(e), line=text) from e

    def parse_line(self, line: str, first: bool = False) -> List[ParsedMessage]:
        """
        Parse one JSON-lines record.

        A malformed record is logged and skipped, unless it is the first one,
        which frames the session.
        """
        stripped = line.strip()
        if not stripped:
            return []
        try:
            event = json.loads(stripped)
            if not isinstance(event, dict):
                raise ValueError("record is not a JSON object")
            return self.provider.translate_event(event)
        except MALFORMED_RECORD_ERRORS as e:
            if first:
                raise ParseError(f"Malformed first line of JSON stream: {e}", line=stripped) from e
            logger.warning(f"Skipping malformed stream line: {stripped[:200]}")
            return []

    def parse_lines(self, lines: Iterable[str]) -> List[ParsedMessage]:
        messages: List[ParsedMessage] = []
        first = True
        for line in lines:
            if not line.strip():
                continue
            messages.extend(self.parse_line(line, first=first))
            first = False
        return messages

    def build_result(
        self,
        output: ProcessOutput,
        spec: CommandSpec,
        options: ExecuteOptions
    ) -> ExecuteResult:
        """
        Parse a completed process into an ExecuteResult.

        Raises:
            ParseError: Exit 0 but the output does not decode per its format
            NonZeroExitError: Non-zero exit with no messages and no stderr
        """
        try:
            messages = self.parse(output.stdout, spec.output_format, spec)
        except ParseError as e:
            if output.exit_code == 0:
                raise
            logger.warning(f"Ignoring unparseable output of failed run: {e}")
            messages = []

        if output.exit_code != 0 and not messages and not output.stderr.strip():
            logger.error(f"CLI exited with code {output.exit_code} and produced no output")
            raise NonZeroExitError(output.exit_code, output.stdout, output.stderr)

        messages = self.with_terminal_result(
            messages, spec.output_format, output.exit_code, output.stderr, output.duration
        )
        return self.assemble(
            messages,
            spec.output_format,
            options,
            exit_code=output.exit_code,
            stdout=output.stdout,
            stderr=output.stderr,
            duration=output.duration,
        )

    def with_terminal_result(
        self,
        messages: List[ParsedMessage],
        output_format: OutputFormat,
        exit_code: int,
        stderr: str = "",
        duration: float = 0.0,
    ) -> List[ParsedMessage]:
        """
        Close a text or single-document session with a synthesized result.

        Those formats carry no terminal record of their own, so the exit code
        stands in for it. JSON streams are returned unchanged.
        """
        if output_format == OutputFormat.STREAM_JSON:
            return messages
        if any(isinstance(m, ResultMessage) for m in messages):
            return messages
        return messages + [ResultMessage(
            subtype="success" if exit_code == 0 else "error",
            is_error=exit_code != 0,
            duration_ms=int(duration * 1000),
            result=stderr.strip() if exit_code != 0 else None,
        )]

    def assemble(
        self,
        messages: List[ParsedMessage],
        output_format: OutputFormat,
        options: ExecuteOptions,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
        duration: float = 0.0,
        cancelled: bool = False,
    ) -> ExecuteResult:
        session = StreamingSession()
        for message in messages:
            session.feed(message)
        result = session.result

        text = _join_assistant_text(messages)
        logical_failure = bool(result and result.is_error)
        if output_format == OutputFormat.STREAM_JSON and result is None and not cancelled:
            logger.warning("JSON stream ended without a result message")
            logical_failure = True

        output = text
        if result and result.is_error and result.result:
            output = output or result.result
        if not output and (exit_code != 0 or logical_failure):
            output = stderr.strip() or stdout.strip()

        if cancelled:
            status = ResultStatus.CANCELLED
        elif exit_code != 0 or logical_failure:
            status = ResultStatus.ERROR
        elif not text:
            status = ResultStatus.PARTIAL
        else:
            status = ResultStatus.SUCCESS

        session_id = (
            session.session_id
            or self.provider.extract_session_id(stderr)
            or self.provider.extract_session_id(stdout if output_format == OutputFormat.TEXT else "")
        )
        model = (
            session.model
            or self.provider.extract_model(stderr)
            or options.model
            or self.provider.default_model
        )
        metadata = Metadata(
            model=model,
            duration=duration,
            usage=result.usage if result else Usage(),
            cost=result.cost if result else Cost(),
            session_id=session_id,
            num_turns=result.num_turns if result else 0,
        )

        logger.info(f"Parsed response: {len(output)} chars, {metadata.usage.total_tokens} tokens, status={status.value}")

        return ExecuteResult(
            output=output,
            activity_log=stderr,
            exit_code=exit_code,
            duration=duration,
            model=model,
            session_id=session_id,
            messages=messages,
            metadata=metadata,
            status=status,
            logical_failure=logical_failure,
        )


def _join_assistant_text(messages: List[ParsedMessage]) -> str:
    """Concatenate assistant text; streamed deltas are joined without separators."""
    text = ""
    for message in messages:
        if not isinstance(message, AssistantMessage) or not message.text:
            continue
        if text and not message.raw.get("delta"):
            text += "\n"
        text += message.text
    return text.strip()
