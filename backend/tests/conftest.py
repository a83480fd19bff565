"""
Shared fixtures: sample records and a stand-in for the decoder subprocess.
"""

import io
import threading
from datetime import datetime, timezone

import pytest

from flightlog.config import PipelineSettings
from flightlog.services.normalizer import normalize_payload
from flightlog.utils.sample_data import generate_frames_payload


RECORD_NAME = "DJIFlightRecord_2024-05-01_[12-00-00].txt"


@pytest.fixture
def record_name():
    """Filename following the DJI flight-record naming pattern."""
    return RECORD_NAME


@pytest.fixture
def no_decoder(monkeypatch, tmp_path):
    """Make sure no decoder binary can be found anywhere."""
    monkeypatch.delenv("DJI_LOG_PARSER_PATH", raising=False)
    monkeypatch.delenv("DJI_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("flightlog.services.decoder_cli.shutil.which", lambda name: None)
    return PipelineSettings()


@pytest.fixture
def decoder_tool(tmp_path):
    """An existing file standing in for the decoder executable."""
    tool = tmp_path / "bin" / "dji-log"
    tool.parent.mkdir()
    tool.write_bytes(b"")
    return tool


class EndlessStdout:
    """Stdout of a decoder that keeps writing until it is killed."""

    def __init__(self, process, chunk=b"x" * 4096):
        self.process = process
        self.chunk = chunk
        self.bytes_read = 0

    def read(self, size=-1):
        if self.process.killed:
            return b""
        self.bytes_read += len(self.chunk)
        return self.chunk

    def close(self):
        pass


class SilentStdout:
    """Stdout of a decoder that hangs without writing anything."""

    def __init__(self, process):
        self.process = process

    def read(self, size=-1):
        self.process.kill_event.wait(5)
        return b""

    def close(self):
        pass


class FakeProcess:
    """Popen stand-in that replays a scripted decoder run."""

    def __init__(self, script, args, stdout=None, stderr=None, cwd=None):
        if script["raises"] is not None:
            raise script["raises"]
        self.script = script
        self.killed = False
        self.kill_event = threading.Event()
        self.returncode = None
        stderr.write(script["stderr"])
        if script["file"] is not None:
            with open(args[-1], "wb") as f:
                f.write(script["file"])
        if script["hangs"]:
            self.stdout = SilentStdout(self)
        elif script["endless"]:
            self.stdout = EndlessStdout(self)
        else:
            self.stdout = io.BytesIO(script["stdout"])

    def kill(self):
        self.killed = True
        self.kill_event.set()

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        self.returncode = -9 if self.killed else self.script["returncode"]
        return self.returncode


@pytest.fixture
def fake_decoder(monkeypatch, decoder_tool):
    """
    Replace subprocess.Popen with a scripted decoder.

    Call the returned function to configure what the next invocation
    writes to stdout, to the output file (the last argument) and to
    stderr. `endless=True` keeps stdout flowing until the process is
    killed; `hangs=True` blocks without output until killed. Each
    invocation's argument list is appended to `calls` and each process
    to `processes`.
    """
    script = {
        "stdout": b"",
        "file": None,
        "stderr": b"",
        "returncode": 0,
        "raises": None,
        "endless": False,
        "hangs": False,
    }
    calls = []
    processes = []

    def fake_popen(args, **kwargs):
        calls.append(list(args))
        process = FakeProcess(script, args, **kwargs)
        processes.append(process)
        return process

    monkeypatch.setattr("flightlog.services.decoder_cli.subprocess.Popen", fake_popen)

    def configure(stdout=b"", file=None, stderr=b"", returncode=0, raises=None, endless=False, hangs=False):
        script.update(
            stdout=stdout,
            file=file,
            stderr=stderr,
            returncode=returncode,
            raises=raises,
            endless=endless,
            hangs=hangs,
        )
        return PipelineSettings(decoder_path=str(decoder_tool))

    configure.calls = calls
    configure.processes = processes
    return configure


def make_decoded_log(filename, day=1, serial="BAT-0001", battery_start=90.0):
    """Normalize a 50-frame decoder payload recorded on 2024-05-<day>."""
    payload = generate_frames_payload(
        50,
        start_time=datetime(2024, 5, day, 12, 0, 0, tzinfo=timezone.utc),
        battery_start=battery_start,
        battery_drain_per_frame=0.1,
        battery_serial=serial,
    )
    return normalize_payload(payload, filename, filename.encode("utf-8"), PipelineSettings())


@pytest.fixture
def decoded_log():
    """Factory for decoder-parsed flight logs."""
    return make_decoded_log
