"""Process table lookup and reload signalling."""

import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

from .exceptions import ProcessNotFoundError, ReloadError

logger = logging.getLogger(__name__)

SignalSender = Callable[[int, int], None]


@dataclass(frozen=True)
class Process:
    """A process and its raw, NUL-separated command line."""

    pid: int
    cmdline: Optional[str]

    def sighup(self, send_signal: SignalSender = os.kill) -> None:
        """
        Ask the process to reload its configuration.

        Raises:
            ProcessLookupError: If the process no longer exists
            ReloadError: If the signal cannot be delivered for another reason
        """
        try:
            send_signal(self.pid, signal.SIGHUP)
        except ProcessLookupError:
            raise
        except OSError as e:
            raise ReloadError(self.pid, str(e)) from e


class ProcessLocator:
    """Finds processes by command line prefix by scanning a proc filesystem."""

    def __init__(self, proc_root: Path = Path("/proc")):
        self.proc_root = Path(proc_root)

    def _read_cmdline(self, pid: int) -> Optional[str]:
        try:
            return (self.proc_root / str(pid) / "cmdline").read_bytes().decode(errors="replace")
        except OSError:
            return None

    def iter_processes(self) -> Iterator[Process]:
        """
        Iterate over all processes in the table.

        Processes whose command line cannot be read (exited, or not
        permitted) are yielded with ``cmdline`` set to None.
        """
        pids = sorted(int(entry.name) for entry in self.proc_root.iterdir() if entry.name.isdigit())
        for pid in pids:
            yield Process(pid=pid, cmdline=self._read_cmdline(pid))

    def find(self, prefix: str) -> Process:
        """
        Find the first process whose command line starts with a prefix.

        Args:
            prefix: NUL-separated command line prefix (e.g. "headscale\\0serve\\0")

        Returns:
            The matching process

        Raises:
            ProcessNotFoundError: If no process matches
        """
        for process in self.iter_processes():
            if process.cmdline is not None and process.cmdline.startswith(prefix):
                logger.debug(f"Found process {process.pid} matching {prefix!r}")
                return process
        raise ProcessNotFoundError(prefix)
