"""
Starts and stops a student's server process.
"""

import logging
import os
import pathlib
import shlex
import subprocess
import threading

from batchgrader.config import DEFAULT_READINESS_TIMEOUT_SEC, DEFAULT_TRUSTED_INTERPRETER
from batchgrader.errors import ConfigurationError, FatalGraderError

# Settings
DEFAULT_KILL_TIMEOUT_SEC = 5.0
READINESS_MARKERS = ("localhost", "127.0.0.1")
READ_CHUNK_SIZE = 4096

logger = logging.getLogger(__name__)

class ProcessSupervisor:
    """Runs a submission's start command as a subprocess

    Readiness is detected by watching each chunk of process output for a
    loopback address (a server announcing where it is listening), whether or
    not it ends in a newline. If that never shows up, grading continues after
    `readiness_timeout` seconds anyway.

    Args:
        directory (Path): Working directory for the subprocess.
        trusted_interpreter (str, optional): The only binary a start command
            may invoke.
        readiness_timeout (float, optional): Seconds to wait for readiness.
        kill_timeout (float, optional): Seconds to wait for the process to exit
            after each termination attempt.
    """

    UNSTARTED = "unstarted"
    STARTING = "starting"
    READY = "ready"
    TIMED_OUT = "timed_out"
    EXITED = "exited"

    def __init__(
        self,
        directory,
        trusted_interpreter: str = DEFAULT_TRUSTED_INTERPRETER,
        readiness_timeout: float = DEFAULT_READINESS_TIMEOUT_SEC,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT_SEC,
    ):
        self.directory = pathlib.Path(directory)
        self.trusted_interpreter = trusted_interpreter
        self.readiness_timeout = readiness_timeout
        self.kill_timeout = kill_timeout
        self.process = None
        self.closed = True
        self._state = self.UNSTARTED
        self._ready = threading.Event()
        self._listening = False

    @property
    def state(self) -> str:
        if self.process is not None and self.closed:
            return self.EXITED
        return self._state

    def start(self, command: str) -> subprocess.Popen:
        """Start the command and wait until it is ready or the timeout passes

        Args:
            command (str): Start command, e.g. "node app.js".

        Returns:
            subprocess.Popen: The running process.

        Raises:
            ConfigurationError: If the command does not use the trusted interpreter.
        """
        args = shlex.split(command or "")
        if not args or pathlib.Path(args[0]).name != self.trusted_interpreter:
            raise ConfigurationError(f"Possibly unsafe start command encountered: {command}")

        logger.debug(f"Starting '{command}' in {self.directory}")
        self._state = self.STARTING
        self._ready.clear()
        self._listening = False
        self.process = subprocess.Popen(
            args,
            cwd=self.directory,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        self.closed = False

        threading.Thread(target=self._watch_output, args=(self.process,), daemon=True).start()
        threading.Thread(target=self._watch_exit, args=(self.process,), daemon=True).start()

        self._ready.wait(timeout=self.readiness_timeout)
        if self._listening:
            self._state = self.READY
            logger.debug(f"Process {self.process.pid} reported it is listening")
        else:
            self._state = self.TIMED_OUT
            logger.debug(f"No readiness signal from process {self.process.pid}, continuing")
        return self.process

    def stop(self):
        """Terminate the process if it is still running

        Raises:
            FatalGraderError: If the process could not be killed.
        """
        if self.process is None or self.closed:
            return

        logger.debug(f"Terminating process {self.process.pid}")
        try:
            self.process.terminate()
            try:
                self.process.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Process {self.process.pid} ignored terminate, killing it")
                self.process.kill()
                self.process.wait(timeout=self.kill_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise FatalGraderError(f"Failed to kill student submission process: {e}") from e
        self.closed = True

    def _watch_output(self, process: subprocess.Popen):
        fd = process.stdout.fileno()
        for chunk in iter(lambda: os.read(fd, READ_CHUNK_SIZE), b""):
            text = chunk.decode(errors="replace")
            logger.debug(f"[{process.pid}] {text.rstrip()}")
            if not self._listening and any(marker in text for marker in READINESS_MARKERS):
                self._listening = True
                self._ready.set()
        # Output closed, nothing left to wait for
        self._ready.set()
        process.stdout.close()

    def _watch_exit(self, process: subprocess.Popen):
        returncode = process.wait()
        self.closed = True
        logger.debug(f"Process {process.pid} exited with code {returncode}")
