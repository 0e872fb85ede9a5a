"""Test doubles shared across test modules."""

import threading
import time
from pathlib import Path

from iotdb_restore.core.executor import CommandOutput

LOAD_OK = "Msg: The statement is executed successfully."


class FakeExecutor:
    """Scripted stand-in for ``PodExecutor``.

    ``responses`` maps a command substring to a ``CommandOutput``, an
    exception, or a callable taking the command. The first matching substring
    wins; unmatched commands succeed.
    """

    def __init__(self, responses=None, delay=0.0, existing=()):
        self.responses = dict(responses or {})
        self.delay = delay
        self.existing = set(existing)
        self.commands = []
        self.uploads = []
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()

    def execute(self, command):
        with self._lock:
            self.commands.append(command)
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            for needle, response in self.responses.items():
                if needle in command:
                    if isinstance(response, Exception):
                        raise response
                    if callable(response):
                        return response(command)
                    return response
            return CommandOutput(stdout=LOAD_OK, stderr="", exit_code=0)
        finally:
            with self._lock:
                self._active -= 1

    def file_exists(self, path):
        return path in self.existing

    def upload(self, local_path, remote_path):
        self.uploads.append((local_path, remote_path))
        return Path(local_path).stat().st_size

    def commands_containing(self, needle):
        return [command for command in self.commands if needle in command]


