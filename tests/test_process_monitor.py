import threading
from unittest.mock import MagicMock

import psutil
import pytest

from document_conversion_platform.ingest_tools.process_monitor import (
    ProcessMonitor,
    ProcessSample,
    ProcessTable,
    parse_process_line,
)

PS_OUTPUT = [
    "USER         PID %CPU %MEM    VSZ   RSS TTY      STAT START   TIME COMMAND",
    "root           1  0.0  0.1 167744 11680 ?        Ss   Oct18   0:03 /sbin/init",
    "app         4242 35.2 12.5 2841220 1023404 ?     Sl   10:01   4:12 /usr/lib/libreoffice/program/soffice.bin --headless",
    "app         4243  1.0 10.0 2841220 819200 ?      Sl   10:02   0:10 /usr/lib/libreoffice/program/soffice.bin --headless",
    "app         4244  0.3  2.1 2841220 172032 ?      Sl   10:03   0:01 /usr/lib/libreoffice/program/soffice.bin --headless",
    "app   garbage soffice.bin line",
]


class FakeProcessTable:
    def __init__(self, lines):
        self.lines = lines
        self.killed = []

    def list_lines(self):
        return self.lines

    def kill(self, pid):
        self.killed.append(pid)
        return True


def test_parse_process_line():
    sample = parse_process_line(PS_OUTPUT[2])

    assert sample == ProcessSample(
        pid="4242",
        cpu_percent=35.2,
        memory_percent=12.5,
        command="/usr/lib/libreoffice/program/soffice.bin --headless",
    )


@pytest.mark.parametrize("line", [PS_OUTPUT[0], PS_OUTPUT[-1], "", "   "])
def test_malformed_lines_are_skipped(line):
    assert parse_process_line(line) is None


def test_only_processes_above_threshold_are_killed():
    table = FakeProcessTable(PS_OUTPUT)
    monitor = ProcessMonitor(table, binary_name="soffice.bin", memory_threshold=10.0)

    assert monitor.check() == ["4242"]
    assert table.killed == ["4242"]


def test_samples_filter_on_binary_name():
    monitor = ProcessMonitor(FakeProcessTable(PS_OUTPUT))

    assert [s.pid for s in monitor.samples()] == ["4242", "4243", "4244"]


def test_nothing_killed_below_threshold():
    table = FakeProcessTable(PS_OUTPUT[:2] + PS_OUTPUT[3:])
    monitor = ProcessMonitor(table)

    assert monitor.check() == []
    assert table.killed == []


def test_run_survives_listing_errors():
    class FailingTable(FakeProcessTable):
        calls = 0

        def list_lines(self):
            self.calls += 1
            if self.calls == 1:
                raise OSError("ps not found")
            return PS_OUTPUT

    table = FailingTable([])
    monitor = ProcessMonitor(table, interval=0.01)
    shutdown_event = threading.Event()
    thread = threading.Thread(target=monitor.run, args=(shutdown_event,))
    thread.start()

    for _ in range(200):
        if table.killed:
            break
        shutdown_event.wait(0.01)
    shutdown_event.set()
    thread.join(timeout=2)

    assert "4242" in table.killed
    assert not thread.is_alive()


def test_samples_ignore_other_programs_mentioning_the_binary():
    lines = [
        "soffice.bin  5000  0.0 40.0 2841220 1023404 ?     S    10:01   0:01 /usr/bin/python3 worker.py",
        "app          5001  0.0 40.0 2841220 1023404 pts/1 S+   10:01   0:01 vim /tmp/soffice.bin.log",
        PS_OUTPUT[2],
    ]
    table = FakeProcessTable(lines)

    assert ProcessMonitor(table).check() == ["4242"]
    assert table.killed == ["4242"]


def test_kill_failure_does_not_stop_the_tick():
    class DeniedTable(FakeProcessTable):
        def kill(self, pid):
            if pid == "100":
                raise psutil.AccessDenied(pid=100)
            return super().kill(pid)

    table = DeniedTable([
        "other        100  1.0 20.0 2841220 1023404 ?     Sl   10:01   4:12 /usr/lib/libreoffice/program/soffice.bin",
        "app          200  1.0 30.0 2841220 1023404 ?     Sl   10:01   4:12 /usr/lib/libreoffice/program/soffice.bin",
    ])

    assert ProcessMonitor(table).check() == ["200"]
    assert table.killed == ["200"]


@pytest.fixture
def psutil_process(monkeypatch):
    process_class = MagicMock()
    monkeypatch.setattr("document_conversion_platform.ingest_tools.process_monitor.psutil.Process", process_class)
    return process_class


def test_process_table_kill_waits_for_exit(psutil_process):
    assert ProcessTable(kill_timeout=5).kill("4242") is True

    psutil_process.assert_called_once_with(4242)
    psutil_process.return_value.kill.assert_called_once_with()
    psutil_process.return_value.wait.assert_called_once_with(timeout=5)


def test_process_table_kill_of_missing_pid(psutil_process):
    psutil_process.side_effect = psutil.NoSuchProcess(999999)

    assert ProcessTable().kill("999999") is True


def test_process_table_kill_times_out(psutil_process):
    psutil_process.return_value.wait.side_effect = psutil.TimeoutExpired(0.05, pid=4242)

    assert ProcessTable(kill_timeout=0.05).kill("4242") is False


def test_process_table_access_denied_propagates(psutil_process):
    psutil_process.return_value.kill.side_effect = psutil.AccessDenied(pid=4242)

    with pytest.raises(psutil.AccessDenied):
        ProcessTable().kill("4242")
