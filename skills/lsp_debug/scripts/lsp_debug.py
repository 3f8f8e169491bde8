#!/usr/bin/env python3
# /// script
# requires-python = ">=3.12"
# dependencies = ["lsprotocol>=2024.0.0", "rich>=13.0"]
# ///
"""LSP Debug — Drive a language server interactively over stdio.

Launches a language server (clangd by default) as a subprocess, opens one
document in it, and lets an operator fire requests at it from the console
(definition, references, document symbols). Responses arrive asynchronously
and are paired back to the request that produced them.

Architecture:
    console ──> CommandLoop ──> RequestCorrelator.register ──> stdin ──┐
                                                                       │
                                                               language server
                                                                       │
    renderer <── RequestCorrelator.resolve <── FrameReader <── stdout ─┤
    renderer <── pump_diagnostics <─────────────────────────── stderr ─┘

Three threads run for the lifetime of the session: the command loop (writes
stdin), the response pump (drains stdout) and the diagnostic pump (drains
stderr). Both output pipes are always drained; a full pipe buffer would
otherwise stall the server and, through it, our own stdin writes.

Console commands:
    help                      List commands and outstanding request ids
    def [line character]      textDocument/definition
    ref [line character]      textDocument/references
    sym                       textDocument/documentSymbol
    quit (or an empty line)   didClose + exit, then wait for the server
"""

from __future__ import annotations

import argparse
import enum
import json
import logging
import os
import shlex
import subprocess
import sys
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from lsprotocol import types
from lsprotocol.converters import get_converter
from rich.console import Console

# ============================================================================
# Configuration
# ============================================================================

SCRIPT = Path(__file__)
SCRIPT_NAME = SCRIPT.stem
SCRIPT_DIR = SCRIPT.parent.resolve()

log = logging.getLogger(__name__)

RPC_VERSION = "2.0"
HEADER_PREFIX = "Content-Length: "
HEADER_DELIMITER = b"\r\n"

DEFAULT_COMMAND = "clangd"
DEFAULT_FILE = "main.c"
DEFAULT_LANGUAGE_ID = "c"
# (line, character), zero-based
DEFAULT_POSITION: tuple[int, int] = (9, 4)

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".c": "c",
    ".h": "c",
    ".cc": "cpp",
    ".cpp": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".m": "objective-c",
    ".mm": "objective-cpp",
    ".py": "python",
    ".rs": "rust",
    ".go": "go",
    ".ts": "typescript",
    ".js": "javascript",
}

AVAILABLE_COMMANDS = "help, def, ref, sym, quit"

_converter = get_converter()


# ============================================================================
# Layer 1: Frame Codec
# ============================================================================


class EndOfStream(Exception):
    """The stream closed before another header line arrived."""


class FramingError(Exception):
    """A frame could not be read; the reader can keep scanning afterwards."""


class UnexpectedLine(FramingError):
    """A line where a Content-Length header was expected."""

    def __init__(self, line: str) -> None:
        super().__init__(f"Unexpected line: {line.rstrip()}")
        self.line = line


class BadLength(FramingError):
    """The Content-Length header did not carry a usable byte count."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"Failed to parse Content-Length: {raw.strip()!r}")
        self.raw = raw


class ShortRead(FramingError):
    """The stream ended inside a frame."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"Stream ended after {received} of {expected} bytes")
        self.expected = expected
        self.received = received


class MalformedBody(Exception):
    """A well-framed body that is not JSON. Carries the raw text."""

    def __init__(self, text: str) -> None:
        super().__init__(text)
        self.text = text


def encode_frame(message: Any) -> bytes:
    """Serialize a JSON value into a Content-Length framed message."""
    body = json.dumps(message, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    header = f"{HEADER_PREFIX}{len(body)}\r\n\r\n".encode("ascii")
    return header + body


class FrameReader:
    """Decode Content-Length framed JSON messages from a binary stream.

    One call to read_message() consumes at most one frame. Framing problems
    are raised as FramingError subclasses and leave the reader usable:

    - After BadLength the reader silently discards the abandoned frame (up
      to its first newline or the next header token), so a single corrupted
      frame costs a single diagnostic. Noise after that is reported again.
    - Bodies are not newline terminated, so a line may hold the tail of a
      body followed by the next header. The header part is kept for the
      next call and only the prefix is reported.
    """

    def __init__(self, stream: IO[bytes]) -> None:
        self._stream = stream
        self._pending: str | None = None
        self._resync = False

    def read_message(self) -> Any | None:
        """Read one frame. Returns None when the frame carries no message."""
        header = self._next_header()
        raw_length = header[len(HEADER_PREFIX) :]
        try:
            length = int(raw_length.strip())
        except ValueError:
            length = -1
        if length < 0:
            self._resync = True
            raise BadLength(raw_length)

        delimiter = self._stream.read(len(HEADER_DELIMITER))
        if len(delimiter) < len(HEADER_DELIMITER):
            raise ShortRead(length, 0)

        body = self._stream.read(length)
        if len(body) < length:
            raise ShortRead(length, len(body))

        text = body.decode("utf-8", errors="replace").rstrip()
        if not text:
            log.warning("Received empty JSON message")
            return None
        try:
            return json.loads(text)
        except (json.JSONDecodeError, RecursionError):
            raise MalformedBody(text) from None

    def _next_header(self) -> str:
        while True:
            if self._pending is not None:
                line, self._pending = self._pending, None
            else:
                raw = self._stream.readline()
                if not raw:
                    raise EndOfStream()
                line = raw.decode("utf-8", errors="replace")

            if line.startswith(HEADER_PREFIX):
                self._resync = False
                return line

            index = line.find(HEADER_PREFIX)
            if self._resync:
                if index >= 0:
                    self._resync = False
                    return line[index:]
                # Blank delimiter lines are skipped, the abandoned body line ends it
                if line.strip():
                    self._resync = False
                log.debug("Skipping while resynchronising: %r", line)
                continue
            if index > 0:
                self._pending = line[index:]
                raise UnexpectedLine(line[:index])
            raise UnexpectedLine(line)


# ============================================================================
# Layer 2: Request Builder
# ============================================================================


@dataclass(frozen=True)
class OutgoingMessage:
    """A JSON-RPC envelope together with its encoded frame."""

    envelope: dict[str, Any]
    payload: bytes

    @property
    def method(self) -> str:
        method: str = self.envelope["method"]
        return method

    @property
    def request_id(self) -> int | None:
        return self.envelope.get("id")


def _message(method: str, params: Any = None, request_id: int | None = None) -> OutgoingMessage:
    envelope: dict[str, Any] = {"jsonrpc": RPC_VERSION, "method": method}
    if params is not None:
        envelope["params"] = _converter.unstructure(params)
    if request_id is not None:
        envelope["id"] = request_id
    return OutgoingMessage(envelope=envelope, payload=encode_frame(envelope))


def _text_position(line: int, character: int) -> types.Position:
    for name, value in (("line", line), ("character", character)):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
    return types.Position(line=line, character=character)


def initialize_request(request_id: int, root_uri: str | None = None) -> OutgoingMessage:
    params = types.InitializeParams(
        capabilities=types.ClientCapabilities(),
        process_id=os.getpid(),
        root_uri=root_uri,
    )
    return _message(types.INITIALIZE, params, request_id)


def did_open_notification(uri: str, text: str, language_id: str = DEFAULT_LANGUAGE_ID) -> OutgoingMessage:
    params = types.DidOpenTextDocumentParams(
        text_document=types.TextDocumentItem(uri=uri, language_id=language_id, version=1, text=text),
    )
    return _message(types.TEXT_DOCUMENT_DID_OPEN, params)


def definition_request(request_id: int, uri: str, line: int, character: int) -> OutgoingMessage:
    params = types.DefinitionParams(
        text_document=types.TextDocumentIdentifier(uri=uri),
        position=_text_position(line, character),
    )
    return _message(types.TEXT_DOCUMENT_DEFINITION, params, request_id)


def references_request(
    request_id: int,
    uri: str,
    line: int,
    character: int,
    include_declaration: bool = True,
) -> OutgoingMessage:
    params = types.ReferenceParams(
        context=types.ReferenceContext(include_declaration=include_declaration),
        text_document=types.TextDocumentIdentifier(uri=uri),
        position=_text_position(line, character),
    )
    return _message(types.TEXT_DOCUMENT_REFERENCES, params, request_id)


def document_symbol_request(request_id: int, uri: str) -> OutgoingMessage:
    params = types.DocumentSymbolParams(text_document=types.TextDocumentIdentifier(uri=uri))
    return _message(types.TEXT_DOCUMENT_DOCUMENT_SYMBOL, params, request_id)


def did_close_notification(uri: str) -> OutgoingMessage:
    params = types.DidCloseTextDocumentParams(text_document=types.TextDocumentIdentifier(uri=uri))
    return _message(types.TEXT_DOCUMENT_DID_CLOSE, params)


def exit_notification() -> OutgoingMessage:
    return _message(types.EXIT)


# ============================================================================
# Layer 3: Request Correlator
# ============================================================================


class RequestCorrelator:
    """Outstanding requests keyed by id, shared by the loop and the pump.

    The id counter and the table are only reachable through register() and
    resolve(), each of which holds the lock for its whole critical section.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._next_id = 1
        self._outstanding: dict[int, OutgoingMessage] = {}

    def register(self, build: Callable[[int], OutgoingMessage]) -> OutgoingMessage:
        """Allocate the next id, build the request with it and record it."""
        with self._lock:
            request_id = self._next_id
            message = build(request_id)
            self._next_id += 1
            self._outstanding[request_id] = message
        return message

    def resolve(self, request_id: Any) -> OutgoingMessage | None:
        """Remove and return the request for request_id, if we issued it."""
        if isinstance(request_id, bool) or not isinstance(request_id, int):
            return None
        with self._lock:
            return self._outstanding.pop(request_id, None)

    def outstanding(self) -> list[int]:
        with self._lock:
            return sorted(self._outstanding)


# ============================================================================
# Layer 4: Process Session
# ============================================================================


class SpawnError(Exception):
    """Raised when the language server process cannot be started."""

    def __init__(self, command: Sequence[str], cause: OSError) -> None:
        self.command = list(command)
        self.cause = cause
        super().__init__(f"Failed to start server {shlex.join(self.command)}: {cause}")


class ServerSession:
    """A language server subprocess and its three pipes."""

    def __init__(self, proc: subprocess.Popen[bytes]) -> None:
        assert proc.stdin is not None
        assert proc.stdout is not None
        assert proc.stderr is not None
        self._proc = proc
        self.stdin: IO[bytes] = proc.stdin
        self.stdout: IO[bytes] = proc.stdout
        self.stderr: IO[bytes] = proc.stderr

    @classmethod
    def spawn(cls, command: Sequence[str]) -> ServerSession:
        log.info("Starting language server: %s", shlex.join(command))
        try:
            proc = subprocess.Popen(
                list(command),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnError(command, e) from e
        return cls(proc)

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def running(self) -> bool:
        return self._proc.poll() is None

    def wait(self, timeout: float | None = None) -> int:
        """Block until the server exits and return its status.

        With a timeout, a server that ignores `exit` is terminated (and
        killed if it ignores that too) once the timeout expires.
        """
        try:
            return self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("Language server did not exit within %ss, terminating", timeout)
            return self.stop()

    def stop(self) -> int:
        self._proc.terminate()
        try:
            return self._proc.wait(timeout=5.0)
        except subprocess.TimeoutExpired:
            self._proc.kill()
            return self._proc.wait()


# ============================================================================
# Layer 5: Rendering
# ============================================================================


def format_range(rng: dict[str, Any]) -> str:
    """Format an LSP Range as start_line:start_char->end_line:end_char."""
    start = rng.get("start")
    if start is None:
        raise ValueError("Range start is missing")
    end = rng.get("end")
    if end is None:
        raise ValueError("Range end is missing")

    def coord(pos: dict[str, Any], key: str) -> int:
        value = pos.get(key)
        return value if isinstance(value, int) else -1

    return (
        f"{coord(start, 'line')}:{coord(start, 'character')}"
        f"->{coord(end, 'line')}:{coord(end, 'character')}"
    )


def _symbol_kind_name(kind: Any) -> str:
    try:
        return types.SymbolKind(kind).name.lower()
    except ValueError:
        return f"unknown({kind})"


def _pretty(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _print(console: Console, text: str, **kwargs: Any) -> None:
    # Server text goes out verbatim: no markup, emoji codes or highlighting
    console.print(text, markup=False, emoji=False, highlight=False, soft_wrap=True, **kwargs)


class ConsoleRenderer:
    """Human-readable output for everything the session produces.

    Called from all three worker threads; rich's Console serialises each
    print() call, so lines from different threads never interleave.
    """

    def __init__(
        self,
        out: Console | None = None,
        err: Console | None = None,
        *,
        echo_commands: bool = False,
        echo_responses: bool = False,
        echo_stderr: bool = False,
    ) -> None:
        self._out = out or Console(highlight=False)
        self._err = err or Console(stderr=True, highlight=False)
        self.echo_commands = echo_commands
        self.echo_responses = echo_responses
        self.echo_stderr = echo_stderr

    def info(self, text: str) -> None:
        _print(self._out, text)

    def prompt(self, text: str) -> None:
        _print(self._out, text, end="")

    def error(self, text: str) -> None:
        _print(self._err, text, style="red")

    def framing_error(self, error: FramingError) -> None:
        self.error(str(error))

    def raw_text(self, text: str) -> None:
        _print(self._out, text, style="yellow")

    def stderr_line(self, line: str) -> None:
        if self.echo_stderr:
            _print(self._err, f"stderr: {line}", style="red")
        else:
            log.debug("server stderr: %s", line)

    def response(self, request: OutgoingMessage | None, message: Any) -> None:
        """Render a response, using its originating request when known."""
        if request is None:
            _print(self._out, _pretty(message), style="green")
            return

        if self.echo_commands:
            self.info(f"Command: {_pretty(request.envelope)}")
        if self.echo_responses:
            self.info(f"Response: {_pretty(message)}")

        error = message.get("error")
        if error is not None:
            code = error.get("code", "?") if isinstance(error, dict) else "?"
            text = error.get("message", error) if isinstance(error, dict) else error
            self.error(f"{request.method} failed ({code}): {text}")
            return

        handler = self._RESULT_HANDLERS.get(request.method)
        if handler is None:
            if not self.echo_commands:
                self.info(f"Command: {_pretty(request.envelope)}")
            if not self.echo_responses:
                self.info(f"Response: {_pretty(message)}")
            return
        try:
            handler(self, request, message.get("result"))
        except (ValueError, TypeError, AttributeError, RecursionError) as e:
            self.error(f"Failed to display {request.method} result: {e}")

    def _locations(self, result: Any, noun: str) -> None:
        if isinstance(result, dict):
            result = [result]
        if not result:
            self.info(f"No {noun} found.")
            return
        for item in result:
            uri = item.get("uri", item.get("targetUri"))
            rng = item.get("range", item.get("targetSelectionRange"))
            if uri is None:
                self.info(f"{noun.capitalize()} found but URI is missing.")
            elif rng is None:
                self.info(f"{noun.capitalize()} found but range is missing.")
            else:
                self.info(f"{uri}\t{format_range(rng)}")

    def _definition(self, request: OutgoingMessage, result: Any) -> None:
        self._locations(result, "definition")

    def _references(self, request: OutgoingMessage, result: Any) -> None:
        self._locations(result, "references")

    def _symbols(self, request: OutgoingMessage, result: Any) -> None:
        if not result:
            self.info("No symbols found.")
            return
        document_uri = request.envelope["params"]["textDocument"]["uri"]
        self._symbol_lines(result, document_uri, depth=0)

    def _symbol_lines(self, symbols: list[dict[str, Any]], document_uri: str, depth: int) -> None:
        for symbol in symbols:
            name = symbol.get("name")
            if name is None:
                self.info("Symbol found but name is missing.")
                continue
            # SymbolInformation carries a location, DocumentSymbol a range
            location = symbol.get("location")
            if location is not None:
                uri, rng = location.get("uri", document_uri), location.get("range")
            else:
                uri, rng = document_uri, symbol.get("range")
            if rng is None:
                self.info(f"Symbol '{name}' found but range is missing.")
                continue
            kind = _symbol_kind_name(symbol.get("kind"))
            self.info(f"{uri}\t{format_range(rng)}\t{'  ' * depth}{name}\t{kind}")
            self._symbol_lines(symbol.get("children") or [], document_uri, depth + 1)

    _RESULT_HANDLERS: dict[str, Callable[[ConsoleRenderer, OutgoingMessage, Any], None]] = {
        types.TEXT_DOCUMENT_DEFINITION: _definition,
        types.TEXT_DOCUMENT_REFERENCES: _references,
        types.TEXT_DOCUMENT_DOCUMENT_SYMBOL: _symbols,
    }


# ============================================================================
# Layer 6: Pumps
# ============================================================================


def dispatch_message(message: Any, correlator: RequestCorrelator, renderer: ConsoleRenderer) -> None:
    """Pair a decoded message with its request and hand both to the renderer.

    Messages with a `method` are server requests or notifications; their
    ids live in the server's id space and are never looked up.
    """
    request: OutgoingMessage | None = None
    if isinstance(message, dict) and "method" not in message and "id" in message:
        request = correlator.resolve(message["id"])
        if request is None:
            log.warning("Received response for unexpected id=%s", message["id"])
        else:
            log.debug("<- response id=%s method=%s", message["id"], request.method)
    renderer.response(request, message)


def pump_responses(stdout: IO[bytes], correlator: RequestCorrelator, renderer: ConsoleRenderer) -> None:
    """Decode frames from the server's stdout until it closes."""
    reader = FrameReader(stdout)
    while True:
        try:
            message = reader.read_message()
        except EndOfStream:
            break
        except FramingError as e:
            renderer.framing_error(e)
            continue
        except MalformedBody as e:
            renderer.raw_text(e.text)
            continue
        if message is not None:
            dispatch_message(message, correlator, renderer)
    log.debug("stdout closed")


def pump_diagnostics(stderr: IO[bytes], renderer: ConsoleRenderer) -> None:
    """Forward the server's stderr line by line until it closes."""
    for raw in stderr:
        renderer.stderr_line(raw.decode("utf-8", errors="replace").rstrip())
    log.debug("stderr closed")


# ============================================================================
# Layer 7: Interactive Loop
# ============================================================================


class DocumentError(Exception):
    """Raised when the target document cannot be read."""


@dataclass(frozen=True)
class Document:
    path: Path
    uri: str
    text: str
    language_id: str


def load_document(path: Path, language_id: str | None = None) -> Document:
    """Read the document to open in the server."""
    resolved = path.resolve()
    try:
        text = resolved.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentError(f"Unable to read {path}: {e}") from e
    if language_id is None:
        language_id = EXTENSION_TO_LANGUAGE.get(resolved.suffix.lower(), DEFAULT_LANGUAGE_ID)
    return Document(path=resolved, uri=resolved.as_uri(), text=text, language_id=language_id)


class LoopState(enum.Enum):
    AWAITING_COMMAND = "awaiting_command"
    DISPATCHING = "dispatching"
    CLOSED = "closed"


class CommandLoop:
    """Reads operator commands and writes the resulting requests to stdin.

    Blocking single-threaded read loop. It ends on `quit`, on an empty line
    or EOF, and on a failed write to the server; nothing else stops it.
    """

    def __init__(
        self,
        stdin: IO[bytes],
        correlator: RequestCorrelator,
        document: Document,
        renderer: ConsoleRenderer,
        console: IO[str],
        position: tuple[int, int] = DEFAULT_POSITION,
    ) -> None:
        self._stdin = stdin
        self._correlator = correlator
        self._document = document
        self._renderer = renderer
        self._console = console
        self._position = position
        self.state = LoopState.AWAITING_COMMAND
        self.failed = False

    def run(self) -> None:
        root_uri = self._document.path.parent.as_uri()
        try:
            self._send(self._correlator.register(lambda rid: initialize_request(rid, root_uri)))
            self._send(
                did_open_notification(self._document.uri, self._document.text, self._document.language_id)
            )
            while self._step():
                pass
            self._send(did_close_notification(self._document.uri))
            self._send(exit_notification())
        except OSError as e:
            self.failed = True
            self._renderer.error(f"Failed to write to language server: {e}")
        finally:
            self._close_stdin()
            self.state = LoopState.CLOSED

    def _step(self) -> bool:
        words = self._console.readline().split()
        if not words or words[0] == "quit":
            return False
        self.state = LoopState.DISPATCHING
        try:
            self.dispatch(words[0], words[1:])
        finally:
            self.state = LoopState.AWAITING_COMMAND
        return True

    def dispatch(self, command: str, args: list[str]) -> None:
        """Handle one non-terminal command."""
        uri = self._document.uri
        if command == "help":
            self._renderer.info(f"Available commands: {AVAILABLE_COMMANDS}")
            pending = self._correlator.outstanding()
            if pending:
                self._renderer.info(f"Outstanding request ids: {', '.join(map(str, pending))}")
        elif command in ("def", "ref"):
            try:
                line, character = self._position_from(args)
            except ValueError as e:
                self._renderer.error(f"{e}. Usage: {command} [line character]")
                return
            build = definition_request if command == "def" else references_request
            self._send(self._correlator.register(lambda rid: build(rid, uri, line, character)))
        elif command == "sym":
            self._send(self._correlator.register(lambda rid: document_symbol_request(rid, uri)))
        else:
            self._renderer.error(f"Unknown command: {command}")
            self._renderer.error(f"Available commands: {AVAILABLE_COMMANDS}")

    def _position_from(self, args: list[str]) -> tuple[int, int]:
        if not args:
            return self._position
        if len(args) != 2:
            raise ValueError("Expected a line and a character")
        line, character = (int(a) for a in args)
        if line < 0 or character < 0:
            raise ValueError("Positions are zero-based and non-negative")
        return line, character

    def _send(self, message: OutgoingMessage) -> None:
        self._stdin.write(message.payload)
        self._stdin.flush()
        if message.request_id is None:
            log.debug("-> notification method=%s", message.method)
        else:
            log.debug("-> request id=%d method=%s", message.request_id, message.method)

    def _close_stdin(self) -> None:
        try:
            self._stdin.close()
        except OSError as e:
            log.debug("Closing server stdin: %s", e)


# ============================================================================
# Layer 8: Session Coordinator
# ============================================================================


@dataclass(frozen=True)
class SessionConfig:
    command: tuple[str, ...] = (DEFAULT_COMMAND,)
    position: tuple[int, int] = DEFAULT_POSITION
    exit_timeout: float | None = None
    language_id: str | None = None
    echo_commands: bool = False
    echo_responses: bool = False
    echo_stderr: bool = False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> SessionConfig:
        return cls(
            command=tuple(shlex.split(args.command)),
            position=(args.line, args.character),
            exit_timeout=args.exit_timeout,
            language_id=args.language_id,
            echo_commands=args.echo_commands or args.debug,
            echo_responses=args.echo_responses or args.debug,
            echo_stderr=args.echo_stderr or args.debug,
        )


def run_session(
    config: SessionConfig,
    document: Document,
    console: IO[str],
    renderer: ConsoleRenderer,
) -> int:
    """Run one interactive session against a freshly spawned server.

    Returns 0 when the session ended through `quit`/EOF, 1 when the server
    could not be started or a write to it failed.
    """
    try:
        session = ServerSession.spawn(config.command)
    except SpawnError as e:
        renderer.error(str(e))
        return 1

    correlator = RequestCorrelator()
    loop = CommandLoop(session.stdin, correlator, document, renderer, console, config.position)
    stdin_worker = threading.Thread(target=loop.run, name="lsp-stdin", daemon=True)
    pumps = [
        threading.Thread(
            target=pump_responses,
            args=(session.stdout, correlator, renderer),
            name="lsp-stdout",
            daemon=True,
        ),
        threading.Thread(target=pump_diagnostics, args=(session.stderr, renderer), name="lsp-stderr", daemon=True),
    ]
    for worker in (stdin_worker, *pumps):
        worker.start()

    try:
        stdin_worker.join()
        status = session.wait(timeout=config.exit_timeout)
        for pump in pumps:
            pump.join()
    finally:
        if session.running:
            session.stop()

    if status != 0:
        renderer.error(f"Command exited with status: {status}")
    unanswered = correlator.outstanding()
    if unanswered:
        log.info("Requests without a response: %s", unanswered)
    return 1 if loop.failed else 0


# ============================================================================
# Layer 9: CLI Interface
# ============================================================================


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be non-negative, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="lsp_debug",
        description="Drive a language server over stdio and inspect its responses interactively.",
    )
    parser.add_argument("file", nargs="?", default=None, help="Document to open (prompted for when omitted)")
    parser.add_argument(
        "-c",
        "--command",
        default=DEFAULT_COMMAND,
        help=f"Command that starts the language server (default: {DEFAULT_COMMAND})",
    )
    parser.add_argument("--language-id", default=None, help="languageId for didOpen (default: from extension)")
    parser.add_argument(
        "--line",
        type=_non_negative_int,
        default=DEFAULT_POSITION[0],
        help=f"Zero-based line for def/ref (default: {DEFAULT_POSITION[0]})",
    )
    parser.add_argument(
        "--character",
        type=_non_negative_int,
        default=DEFAULT_POSITION[1],
        help=f"Zero-based character for def/ref (default: {DEFAULT_POSITION[1]})",
    )
    parser.add_argument(
        "--exit-timeout",
        type=float,
        default=None,
        help="Seconds to wait for the server to exit before terminating it (default: wait forever)",
    )
    parser.add_argument("--echo-stderr", action="store_true", help="Print stderr from the language server")
    parser.add_argument("--echo-commands", action="store_true", help="Echo the requests behind each response")
    parser.add_argument("--echo-responses", action="store_true", help="Echo the raw responses")
    parser.add_argument("-d", "--debug", action="store_true", help="Turn on all echo options")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    return parser


def _ask_for_file(console: IO[str], renderer: ConsoleRenderer) -> Path:
    renderer.prompt(f"Enter filename (Default {DEFAULT_FILE}): ")
    name = console.readline().strip()
    return Path(name or DEFAULT_FILE)


def main(args: argparse.Namespace, console: IO[str] | None = None, renderer: ConsoleRenderer | None = None) -> int:
    """Main entry point."""
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(threadName)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = SessionConfig.from_args(args)
    console = console or sys.stdin
    renderer = renderer or ConsoleRenderer(
        echo_commands=config.echo_commands,
        echo_responses=config.echo_responses,
        echo_stderr=config.echo_stderr,
    )
    try:
        path = Path(args.file) if args.file else _ask_for_file(console, renderer)
        document = load_document(path, language_id=config.language_id)
        return run_session(config, document, console, renderer)
    except DocumentError as e:
        renderer.error(str(e))
        return 1
    except KeyboardInterrupt:
        return 130


def cli() -> int:
    return main(build_parser().parse_args())


if __name__ == "__main__":  # pragma: no cover
    sys.exit(cli())
