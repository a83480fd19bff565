"""
Trusted decoder subprocess.

Runs the external dji-log decoder on one flight record inside an isolated
temporary directory and returns the JSON payloads it produced, most
preferred first. Failures are classified into ParseErrorKind values; the
orchestrator decides what to do with them.
"""

import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from flightlog.config import PipelineSettings
from flightlog.models.telemetry import ParseError, ParseErrorKind
from flightlog.utils.logfiles import base_filename


logger = logging.getLogger(__name__)


DECODER_EXECUTABLE = "dji-log"
LARGE_STDOUT_CHARS = 100_000
EXCERPT_CHARS = 2000
MIN_EMBEDDED_JSON_CHARS = 100
READ_CHUNK_BYTES = 64 * 1024

CREDENTIAL_REQUIRED_MARKERS = ("API Key is required",)
CREDENTIAL_INVALID_MARKERS = ("Unable to fetch keychain", "ApiKeyError")

EMBEDDED_JSON = re.compile(r"\{[\s\S]*\}")


class DecoderState(Enum):
    """Lifecycle of one decoder invocation."""

    INVOKING = "invoking"
    CAPTURED_STDOUT = "captured_stdout"
    CAPTURED_FILE = "captured_file"
    FAILED = "failed"


@dataclass
class DecoderOutput:
    """Payloads captured from one successful invocation, most preferred first."""

    payloads: list[tuple[str, Any]] = field(default_factory=list)
    state: DecoderState = DecoderState.INVOKING
    stdout_chars: int = 0
    elapsed_s: float = 0.0


def candidate_decoder_paths(override: Optional[str] = None, cwd: Optional[Path] = None) -> list[str]:
    cwd = cwd or Path.cwd()
    paths = []
    if override:
        paths.append(override)
    paths.extend([
        str(cwd / "dji-log-parser" / "dji-log"),
        str(cwd / "dji-log-parser"),
        str(cwd / "dji-log"),
    ])
    return paths


def resolve_decoder_path(override: Optional[str] = None, cwd: Optional[Path] = None) -> str:
    """
    Locate the decoder executable.

    Raises:
        ParseError: TOOL_NOT_FOUND listing every path checked
    """
    checked = candidate_decoder_paths(override, cwd)
    for path in checked:
        if os.path.isfile(path):
            return path

    on_path = shutil.which(DECODER_EXECUTABLE)
    if on_path:
        return on_path
    checked.append(f"$PATH/{DECODER_EXECUTABLE}")

    listing = "\n".join(f"  - {p}" for p in checked)
    raise ParseError(
        ParseErrorKind.TOOL_NOT_FOUND,
        f"Decoder not found. Checked paths:\n{listing}\n"
        "Install the dji-log-parser binary or set DJI_LOG_PARSER_PATH.",
        {"checked_paths": checked},
    )


def _excerpt(text: str) -> str:
    return text[:EXCERPT_CHARS]


def _load_json(text: str) -> Optional[Any]:
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _has_frames(payload: Any) -> bool:
    return isinstance(payload, dict) and isinstance(payload.get("frames"), list) and len(payload["frames"]) > 0


def _classify_exit(returncode: int, stderr: str, stdout: str, tool: str) -> ParseError:
    combined = f"{stderr}\n{stdout}"
    context = {"tool": tool, "returncode": returncode, "stderr": _excerpt(stderr), "stdout": _excerpt(stdout)}

    if any(marker in combined for marker in CREDENTIAL_REQUIRED_MARKERS):
        return ParseError(
            ParseErrorKind.CREDENTIAL_REQUIRED,
            "DJI API key required: this log file is version 13 or above and needs a DJI API key "
            "for decryption. Set the DJI_API_KEY environment variable.",
            context,
        )
    if any(marker in combined for marker in CREDENTIAL_INVALID_MARKERS):
        return ParseError(
            ParseErrorKind.CREDENTIAL_INVALID,
            "DJI API key error: unable to fetch the keychain from DJI servers. The key may be invalid, "
            "lack permissions, or the network may be unreachable.",
            context,
        )
    return ParseError(
        ParseErrorKind.DECODER_FAILED,
        f"Decoder exited with code {returncode}. stderr: {_excerpt(stderr).strip() or '<empty>'}",
        context,
    )


def _salvage_overflow(stdout_text: str, output_file: Path, limit: int) -> DecoderOutput:
    """Recover a payload after stdout exceeded its bound."""
    if output_file.exists():
        payload = _load_json(output_file.read_text(encoding="utf-8", errors="replace"))
        if payload is not None:
            logger.warning("Decoder stdout exceeded bound; using output file")
            return DecoderOutput(payloads=[("file", payload)], state=DecoderState.CAPTURED_FILE)

    match = EMBEDDED_JSON.search(stdout_text)
    if match and len(match.group(0)) > MIN_EMBEDDED_JSON_CHARS:
        payload = _load_json(match.group(0))
        if payload is not None:
            logger.warning("Decoder stdout exceeded bound; using JSON embedded in truncated stdout")
            return DecoderOutput(payloads=[("stdout", payload)], state=DecoderState.CAPTURED_STDOUT)

    raise ParseError(
        ParseErrorKind.OUTPUT_TOO_LARGE,
        f"Decoder output exceeded {limit} bytes and no output file was usable. "
        "The log file may be too large.",
        {"limit_bytes": limit, "output_file": str(output_file)},
    )


def _collect_payloads(stdout_text: str, output_file: Path) -> DecoderOutput:
    """Order captured payloads: large frames stdout, then the file, then stdout."""
    stdout_payload = _load_json(stdout_text)
    file_payload = None
    if output_file.exists():
        file_payload = _load_json(output_file.read_text(encoding="utf-8", errors="replace"))

    payloads: list[tuple[str, Any]] = []
    if len(stdout_text) > LARGE_STDOUT_CHARS and _has_frames(stdout_payload):
        logger.info(f"Large stdout ({len(stdout_text) / 1024:.1f} KB) with {len(stdout_payload['frames'])} frames")
        payloads.append(("stdout", stdout_payload))
        stdout_payload = None
    if file_payload is not None:
        payloads.append(("file", file_payload))
    if stdout_payload is not None:
        payloads.append(("stdout", stdout_payload))

    if not payloads:
        raise ParseError(
            ParseErrorKind.MALFORMED_OUTPUT,
            "Decoder produced no parseable JSON output (stdout and output file empty or invalid).",
            {
                "stdout": _excerpt(stdout_text),
                "output_file_exists": output_file.exists(),
            },
        )

    state = DecoderState.CAPTURED_STDOUT if payloads[0][0] == "stdout" else DecoderState.CAPTURED_FILE
    return DecoderOutput(payloads=payloads, state=state, stdout_chars=len(stdout_text))


def _run_bounded(
    args: list[str], workdir: str, stderr_handle, timeout_s: float, limit: int
) -> tuple[int, bytes, bool]:
    """
    Run the decoder, reading at most `limit` bytes of stdout.

    The child is killed as soon as stdout crosses the limit or the timeout
    elapses, whichever comes first.

    Returns:
        (returncode, captured stdout, overflowed)

    Raises:
        subprocess.TimeoutExpired: if the watchdog had to kill the child
    """
    proc = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=stderr_handle, cwd=workdir)
    timed_out = threading.Event()

    def on_timeout():
        timed_out.set()
        proc.kill()

    watchdog = threading.Timer(timeout_s, on_timeout)
    watchdog.start()
    captured = bytearray()
    overflowed = False
    try:
        while True:
            chunk = proc.stdout.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            captured.extend(chunk)
            if len(captured) > limit:
                overflowed = True
                logger.warning(f"Decoder stdout crossed {limit} bytes; stopping decoder")
                proc.kill()
                break
        proc.stdout.close()
        proc.wait()
    finally:
        watchdog.cancel()
        if proc.poll() is None:
            proc.kill()

    if timed_out.is_set():
        raise subprocess.TimeoutExpired(args, timeout_s)
    return proc.returncode, bytes(captured[:limit]), overflowed


def run_decoder(data: bytes, filename: str, settings: Optional[PipelineSettings] = None) -> DecoderOutput:
    """
    Decode one flight record with the external tool.

    Args:
        data: Raw flight-record bytes
        filename: Original filename (kept for the decoder's own diagnostics)
        settings: Pipeline settings (read from the environment when None)

    Returns:
        DecoderOutput with at least one payload

    Raises:
        ParseError: for every failure mode of the invocation
    """
    settings = settings or PipelineSettings.from_env()
    tool = resolve_decoder_path(settings.decoder_path)
    name = base_filename(filename) or "flight-record.txt"

    with tempfile.TemporaryDirectory(prefix="flightlog-parse-", ignore_cleanup_errors=True) as workdir:
        work = Path(workdir)
        input_file = work / name
        output_file = work / f"{name}.geojson"
        stderr_file = work / "stderr.log"

        try:
            input_file.write_bytes(data)
        except OSError as e:
            raise ParseError(ParseErrorKind.IO_FAILURE, f"Could not stage input file: {e}", {"path": str(input_file)})

        args = [tool, str(input_file)]
        if settings.decoder_credential:
            args.extend([settings.decoder_credential_flag, settings.decoder_credential])
        args.extend([settings.decoder_output_flag, str(output_file)])

        state = DecoderState.INVOKING
        logger.info(f"Invoking decoder {tool} on {name} ({len(data)} bytes)")
        start = time.perf_counter()
        try:
            with open(stderr_file, "wb") as stderr_handle:
                returncode, stdout_bytes, overflowed = _run_bounded(
                    args,
                    workdir,
                    stderr_handle,
                    settings.decoder_timeout_s,
                    settings.decoder_max_output_bytes,
                )
        except FileNotFoundError:
            raise ParseError(
                ParseErrorKind.TOOL_NOT_FOUND,
                f"Decoder at {tool} could not be executed (not found).",
                {"checked_paths": [tool]},
            )
        except PermissionError:
            raise ParseError(
                ParseErrorKind.DECODER_FAILED,
                f"Decoder found at {tool} but is not executable. Run: chmod +x \"{tool}\"",
                {"tool": tool},
            )
        except subprocess.TimeoutExpired:
            raise ParseError(
                ParseErrorKind.SUBPROCESS_TIMEOUT,
                f"Decoder did not finish within {settings.decoder_timeout_s:g}s.",
                {"tool": tool, "timeout_s": settings.decoder_timeout_s},
            )
        except OSError as e:
            raise ParseError(ParseErrorKind.IO_FAILURE, f"Could not run decoder: {e}", {"tool": tool})

        elapsed = time.perf_counter() - start
        stdout_text = stdout_bytes.decode("utf-8", errors="replace")
        try:
            with open(stderr_file, "rb") as f:
                stderr_text = f.read(settings.decoder_max_output_bytes).decode("utf-8", errors="replace")
        except OSError as e:
            raise ParseError(ParseErrorKind.IO_FAILURE, f"Could not read decoder stderr: {e}", {"tool": tool})

        logger.debug(f"Decoder exited with {returncode} after {elapsed:.2f}s, stdout {len(stdout_bytes)} bytes")

        try:
            if overflowed:
                output = _salvage_overflow(stdout_text, output_file, settings.decoder_max_output_bytes)
            elif returncode != 0:
                raise _classify_exit(returncode, stderr_text, stdout_text, tool)
            else:
                output = _collect_payloads(stdout_text, output_file)
        except ParseError as e:
            state = DecoderState.FAILED
            logger.error(f"Decoder {state.value}: {e.kind.value}: {e.message}")
            raise

        output.elapsed_s = elapsed
        logger.info(
            f"Decoder {output.state.value} in {elapsed:.2f}s "
            f"({len(output.payloads)} payload(s): {', '.join(s for s, _ in output.payloads)})"
        )
        return output
