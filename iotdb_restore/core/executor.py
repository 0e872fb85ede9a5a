"""Remote shell command execution inside a Kubernetes pod."""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import List, Optional

import yaml
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream
from kubernetes.stream.ws_client import ERROR_CHANNEL
from websocket import WebSocketException

from .errors import (
    CommandCancelledError,
    CommandError,
    NotFoundError,
    OperationTimeoutError,
    RemoteConnectionError,
    RestoreError,
    StagingError,
)

DEFAULT_TIMEOUT_SECONDS = 30 * 60
POLL_INTERVAL_SECONDS = 1
UPLOAD_CHUNK_SIZE = 1024 * 1024

# stream() swaps call_api on the shared ApiClient while it opens the websocket
_STREAM_LOCK = threading.Lock()


@dataclass
class CommandOutput:
    """Captured output of one remote command."""
    stdout: str
    stderr: str
    exit_code: Optional[int] = None

    @property
    def combined(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


class PodExecutor:
    """Runs ``sh -c`` commands in a pod over the exec websocket.

    The target container is resolved on first use and cached for the lifetime
    of the executor. If that first resolution fails, the failure is cached too
    and every later call re-raises it without contacting the API again.
    """

    def __init__(self, core_api, namespace: str, pod_name: str, container: str = "",
                 timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
                 cancel_event: Optional[threading.Event] = None,
                 logger: Optional[logging.Logger] = None):
        """Initialize pod executor.

        Args:
            core_api: Kubernetes ``CoreV1Api`` instance.
            namespace: Namespace of the target pod.
            pod_name: Name of the target pod.
            container: Container name. Empty means the pod's first container.
            timeout_seconds: Deadline applied to every command.
            cancel_event: Event that aborts in-flight commands when set.
            logger: Logger to use.
        """
        self.core_api = core_api
        self.namespace = namespace
        self.pod_name = pod_name
        self.container = container or None
        self.timeout_seconds = timeout_seconds
        self.cancel_event = cancel_event or threading.Event()
        self.logger = logger or logging.getLogger(__name__)
        self._resolution_error: Optional[RestoreError] = None
        self._resolve_lock = threading.Lock()

    def execute(self, command: str) -> CommandOutput:
        """Run a shell command in the pod.

        Args:
            command: Shell command line, passed to ``sh -c``.

        Returns:
            Captured stdout, stderr and exit code.

        Raises:
            RemoteConnectionError: If the exec channel cannot be used.
            OperationTimeoutError: If the command exceeds the deadline.
            CommandCancelledError: If the cancel event is set mid-command.
            CommandError: If the command exits with a non-zero status.
        """
        deadline = time.monotonic() + self.timeout_seconds
        resp = self._open_stream(['sh', '-c', command], stdin=False)
        return self._collect(resp, command, deadline)

    def upload(self, local_path: str, remote_path: str) -> int:
        """Copy a local file into the pod through the exec channel.

        Returns:
            Number of bytes sent.

        Raises:
            CommandError: If the remote size does not match after the copy.
            StagingError: If the local file cannot be read.
        """
        try:
            size = os.path.getsize(local_path)
            fh = open(local_path, 'rb')
        except OSError as e:
            raise StagingError(f"Cannot read staged file {local_path}: {e}") from e

        command = f"head -c {size} > '{remote_path}'"
        deadline = time.monotonic() + self.timeout_seconds

        self.logger.info(f"Uploading {local_path} to {self.pod_name}:{remote_path} ({size} bytes)")
        with fh:
            resp = self._open_stream(['sh', '-c', command], stdin=True)
            try:
                for chunk in iter(lambda: fh.read(UPLOAD_CHUNK_SIZE), b''):
                    self._check_interrupt(command, deadline)
                    resp.write_stdin(chunk)
            except RestoreError:
                resp.close()
                raise
            except (WebSocketException, OSError) as e:
                resp.close()
                raise RemoteConnectionError(f"Upload to {remote_path} failed: {e}") from e

        self._collect(resp, command, deadline)

        remote_size = self.file_size(remote_path)
        if remote_size != size:
            raise CommandError(
                f"Uploaded size mismatch for {remote_path}: expected {size}, got {remote_size}"
            )
        return size

    def file_exists(self, path: str) -> bool:
        output = self.execute(f"[ -f '{path}' ] && echo 'exists' || echo 'not exists'")
        return output.stdout.strip() == "exists"

    def file_size(self, path: str) -> int:
        output = self.execute(
            f"stat -c%s '{path}' 2>/dev/null || stat -f%z '{path}' 2>/dev/null || echo '0'"
        )
        text = output.stdout.strip()
        try:
            return int(text.split()[0]) if text else 0
        except ValueError as e:
            raise CommandError(f"Unexpected stat output for {path}: {text!r}",
                               stdout=output.stdout, stderr=output.stderr) from e

    def resolve_container(self) -> str:
        """Return the target container name, looking it up once."""
        with self._resolve_lock:
            if self.container:
                return self.container
            if self._resolution_error is not None:
                raise self._resolution_error

            try:
                self.container = self._lookup_first_container()
            except RestoreError as e:
                self._resolution_error = e
                raise

            self.logger.debug(f"Using container {self.container} in pod {self.pod_name}")
            return self.container

    def _lookup_first_container(self) -> str:
        try:
            pod = self.core_api.read_namespaced_pod(name=self.pod_name, namespace=self.namespace)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"Pod {self.namespace}/{self.pod_name} not found") from e
            raise RemoteConnectionError(
                f"Failed to read pod {self.namespace}/{self.pod_name}: {e.reason}"
            ) from e

        containers = pod.spec.containers or []
        if not containers:
            raise NotFoundError(f"Pod {self.namespace}/{self.pod_name} has no containers")
        return containers[0].name

    def _open_stream(self, argv: List[str], stdin: bool):
        container = self.resolve_container()
        try:
            with _STREAM_LOCK:
                return stream(
                    self.core_api.connect_get_namespaced_pod_exec,
                    self.pod_name,
                    self.namespace,
                    container=container,
                    command=argv,
                    stdin=stdin,
                    stdout=True,
                    stderr=True,
                    tty=False,
                    _preload_content=False,
                )
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"Pod {self.namespace}/{self.pod_name} not found") from e
            raise RemoteConnectionError(f"Exec into {self.pod_name} failed: {e.reason}") from e
        except (WebSocketException, OSError) as e:
            raise RemoteConnectionError(f"Exec into {self.pod_name} failed: {e}") from e

    def _collect(self, resp, command: str, deadline: float) -> CommandOutput:
        stdout: List[str] = []
        stderr: List[str] = []

        try:
            while resp.is_open():
                resp.update(timeout=POLL_INTERVAL_SECONDS)
                self._drain(resp, stdout, stderr)
                self._check_interrupt(command, deadline)
            self._drain(resp, stdout, stderr)
            status = resp.read_channel(ERROR_CHANNEL)
        except RestoreError:
            raise
        except (WebSocketException, OSError) as e:
            raise RemoteConnectionError(f"Stream for '{command}' broke: {e}") from e
        finally:
            resp.close()

        output = CommandOutput(stdout=''.join(stdout), stderr=''.join(stderr))
        output.exit_code = self._parse_exit_code(status, command, output)
        if output.exit_code:
            raise CommandError(
                f"Command exited with status {output.exit_code}: {command}",
                stdout=output.stdout, stderr=output.stderr, exit_code=output.exit_code,
            )
        return output

    @staticmethod
    def _drain(resp, stdout: List[str], stderr: List[str]) -> None:
        if resp.peek_stdout():
            stdout.append(resp.read_stdout())
        if resp.peek_stderr():
            stderr.append(resp.read_stderr())

    def _check_interrupt(self, command: str, deadline: float) -> None:
        if self.cancel_event.is_set():
            raise CommandCancelledError(f"Command cancelled: {command}")
        if time.monotonic() >= deadline:
            raise OperationTimeoutError(
                f"Command timed out after {self.timeout_seconds}s: {command}"
            )

    @staticmethod
    def _parse_exit_code(status: str, command: str, output: CommandOutput) -> Optional[int]:
        """Read the exit code from the exec status channel.

        The channel carries a ``metav1.Status`` document. It is empty when the
        server closed the stream without reporting one.
        """
        if not status:
            return None

        doc = yaml.safe_load(status) or {}
        if doc.get('status') == 'Success':
            return 0

        for cause in (doc.get('details') or {}).get('causes') or []:
            if cause.get('reason') == 'ExitCode':
                return int(cause.get('message', 1))

        raise CommandError(
            f"Command failed: {doc.get('message', status)}: {command}",
            stdout=output.stdout, stderr=output.stderr,
        )
