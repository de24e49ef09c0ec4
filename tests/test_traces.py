import gzip

import pytest

from memsim.traces import (
    ContextSwitch,
    UnsupportedTraceError,
    decompress_command,
    open_trace,
    read_context_switches,
    trace_seed,
)


def test_gzip_command():
    assert decompress_command("traces/app.trace.gz") == ["gunzip", "-c", "traces/app.trace.gz"]


def test_xz_command():
    assert decompress_command("traces/app.trace.xz") == ["xz", "-dc", "traces/app.trace.xz"]


def test_unsupported_extension():
    with pytest.raises(UnsupportedTraceError):
        decompress_command("traces/app.trace.bz2")


def test_no_extension():
    with pytest.raises(UnsupportedTraceError):
        decompress_command("trace")


def test_seed_single_letter_app():
    assert trace_seed("dir/a.trace.xz") == ord("a")


def test_seed_ignores_directory():
    assert trace_seed("one/mcf.trace.gz") == trace_seed("another/place/mcf.trace.gz")


def test_seed_differs_by_app():
    assert trace_seed("d/ab.trace.gz") != trace_seed("d/ac.trace.gz")


def test_seed_too_short():
    with pytest.raises(ValueError):
        trace_seed("x.gz")


def test_open_missing_trace(tmp_path):
    with pytest.raises(FileNotFoundError):
        open_trace(tmp_path / "missing.trace.gz")


def test_open_trace_decompresses(tmp_path):
    path = tmp_path / "app.trace.gz"
    payload = b"\x01\x02record bytes\x03"
    with gzip.open(path, "wb") as handle:
        handle.write(payload)
    proc = open_trace(path)
    data, _ = proc.communicate()
    assert data == payload
    assert proc.returncode == 0


def test_open_unsupported_trace(tmp_path):
    path = tmp_path / "app.trace.zip"
    path.write_bytes(b"")
    with pytest.raises(UnsupportedTraceError):
        open_trace(path)


def test_read_context_switches(tmp_path):
    path = tmp_path / "cs.txt"
    path.write_text("100 0 1\n250 1 0\n")
    switches = read_context_switches(path)
    assert switches == [
        ContextSwitch(index=0, cycle=100, swap_cpu=(0, 1)),
        ContextSwitch(index=1, cycle=250, swap_cpu=(1, 0)),
    ]
    assert switches[0].involves(1)
    assert not switches[0].involves(2)


def test_read_empty_schedule(tmp_path):
    path = tmp_path / "cs.txt"
    path.write_text("")
    assert read_context_switches(path) == []


def test_incomplete_record(tmp_path):
    path = tmp_path / "cs.txt"
    path.write_text("100 0\n")
    with pytest.raises(ValueError):
        read_context_switches(path)


def test_non_numeric_record(tmp_path):
    path = tmp_path / "cs.txt"
    path.write_text("100 zero 1\n")
    with pytest.raises(ValueError):
        read_context_switches(path)


def test_missing_schedule(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_context_switches(tmp_path / "none.txt")