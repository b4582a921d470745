"""
Process Monitor - periodically kills converter processes that hold too much
memory.

soffice.bin is long running and leaks memory across conversions. Every tick
the monitor lists OS processes with `ps aux`, keeps the lines whose
executable is the converter binary, and kills any instance above the memory
threshold. A conversion running in a killed instance fails and its file is
retried once its claim expires. Nothing is remembered between ticks.
"""
import logging
import os
import re
import subprocess
from dataclasses import dataclass

import psutil

logger = logging.getLogger(__name__)

# ps aux: USER PID %CPU %MEM VSZ RSS TTY STAT START TIME COMMAND
PS_LINE_PATTERN = re.compile(
    r"^\S+\s+(\d+)\s+(\d+\.\d+)\s+(\d+\.\d+)\s+\S+\s+\S+\s+\S+\s+\S+\s+\S+\s+\S+\s+(.*)$"
)


@dataclass
class ProcessSample:
    pid: str
    cpu_percent: float
    memory_percent: float
    command: str


def parse_process_line(line):
    """Parse one `ps aux` line, returning None if it does not have the expected shape"""
    match = PS_LINE_PATTERN.match(line.strip())
    if not match:
        return None
    pid, cpu, mem, command = match.groups()
    return ProcessSample(pid=pid, cpu_percent=float(cpu), memory_percent=float(mem), command=command)


class ProcessTable:
    """OS access used by the monitor: process listing and forced termination"""

    def __init__(self, kill_timeout=10):
        self.kill_timeout = kill_timeout

    def list_lines(self):
        result = subprocess.run(["ps", "aux"], stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, check=True)
        return result.stdout.splitlines()

    def kill(self, pid):
        """
        Kill pid and wait for it to exit.

        Returns:
            True if the process is gone, False if it is still present after kill_timeout

        Raises:
            psutil.AccessDenied: pid belongs to a user this process may not signal
        """
        try:
            proc = psutil.Process(int(pid))
            proc.kill()
            proc.wait(timeout=self.kill_timeout)
        except psutil.NoSuchProcess:
            return True
        except psutil.TimeoutExpired:
            return False
        return True


class ProcessMonitor:
    """Periodic memory guard for converter processes"""

    def __init__(self, table=None, binary_name="soffice.bin", memory_threshold=10.0, interval=600):
        """
        Args:
            table: ProcessTable (or any object with list_lines() and kill(pid))
            binary_name: Executable name of converter processes
            memory_threshold: Kill processes using more than this % of memory
            interval: Seconds between checks
        """
        self.table = table or ProcessTable()
        self.binary_name = binary_name
        self.memory_threshold = memory_threshold
        self.interval = interval

    def is_converter(self, sample):
        """True if the executable of sample is the monitored binary"""
        parts = sample.command.split()
        return bool(parts) and os.path.basename(parts[0]) == self.binary_name

    def samples(self):
        """ProcessSample for every listed line running the binary"""
        samples = []
        for line in self.table.list_lines():
            sample = parse_process_line(line)
            if sample is None or not self.is_converter(sample):
                continue
            logger.debug(
                f"stage=monitor event=process_seen pid={sample.pid} cpu={sample.cpu_percent} "
                f"mem={sample.memory_percent} command={sample.command}"
            )
            samples.append(sample)
        return samples

    def check(self):
        """
        Run one tick.

        Returns:
            List of pids that were killed
        """
        killed = []
        for sample in self.samples():
            if sample.memory_percent <= self.memory_threshold:
                continue
            logger.warning(
                f"stage=monitor event=killing pid={sample.pid} mem={sample.memory_percent} "
                f"threshold={self.memory_threshold}"
            )
            try:
                gone = self.table.kill(sample.pid)
            except (psutil.Error, OSError) as e:
                logger.error(f"stage=monitor event=kill_failed pid={sample.pid} error={e}")
                continue
            if not gone:
                logger.error(f"stage=monitor event=kill_timeout pid={sample.pid}")
            killed.append(sample.pid)
        return killed

    def run(self, shutdown_event):
        """Check every interval seconds until shutdown_event is set"""
        logger.info(
            f"stage=monitor event=monitor_started binary={self.binary_name} "
            f"threshold={self.memory_threshold} interval={self.interval}s"
        )

        while not shutdown_event.is_set():
            try:
                self.check()
            except Exception as e:
                logger.error(f"stage=monitor event=check_failed error={e}")
                logger.exception("Detailed error information:")
            shutdown_event.wait(self.interval)

        logger.info("stage=monitor event=shutdown_complete")
