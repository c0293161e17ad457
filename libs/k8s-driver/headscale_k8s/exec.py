"""Remote command execution inside running pods."""

import json
import logging
from typing import Any, Optional, Sequence, Union

from kubernetes.client.exceptions import ApiException
from kubernetes.stream import stream
from kubernetes.stream.ws_client import ERROR_CHANNEL

from .cluster import ClusterConnection
from .exceptions import ExecChannelError
from .models import ExecFailure, ExecIndeterminate, ExecOutcome, ExecSuccess

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "Success"
STATUS_FAILURE = "Failure"


def _parse_status(raw: Union[str, bytes, dict, None]) -> Optional[dict[str, Any]]:
    """Parse the payload of the exec status channel."""
    if raw is None:
        return None
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _exit_code(status: dict[str, Any]) -> int:
    """Extract the process exit code from a Failure status."""
    causes = (status.get("details") or {}).get("causes") or []
    for cause in causes:
        if cause.get("reason") == "ExitCode":
            try:
                return int(cause.get("message", ""))
            except ValueError:
                break
    # Failures without an ExitCode cause never started the process
    return int(status.get("code") or 1)


def classify_exec_status(
    raw_status: Union[str, bytes, dict, None],
    stdout: str = "",
    stderr: str = "",
) -> ExecOutcome:
    """
    Classify the result of a remote command.

    Args:
        raw_status: Content of the exec status channel (JSON-encoded v1.Status)
        stdout: Everything the process wrote to stdout
        stderr: Everything the process wrote to stderr

    Returns:
        ExecSuccess, ExecFailure or ExecIndeterminate
    """
    status = _parse_status(raw_status)
    if status is None:
        return ExecIndeterminate("no status received from exec channel")

    outcome = status.get("status")
    if outcome == STATUS_SUCCESS:
        return ExecSuccess(stdout)
    if outcome == STATUS_FAILURE:
        return ExecFailure(_exit_code(status), stderr or status.get("message", ""))

    return ExecIndeterminate(
        status.get("message") or f"unknown exec response status: {outcome!r}"
    )


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class PodExecutor:
    """Runs commands inside pod containers over the exec subresource."""

    def __init__(self, cluster: ClusterConnection):
        """
        Initialize pod executor.

        Args:
            cluster: Cluster connection
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1

    def run(
        self,
        pod: str,
        namespace: str,
        command: Sequence[str],
        container: Optional[str] = None,
    ) -> ExecOutcome:
        """
        Run a command in a pod and wait for it to finish.

        stdin is disabled; stdout and stderr are captured in full.

        Args:
            pod: Pod name
            namespace: Kubernetes namespace
            command: Argument vector
            container: Container name (None for the pod's only container)

        Returns:
            Classified outcome of the remote process

        Raises:
            ExecChannelError: If the channel could not be opened or broke
        """
        logger.debug(f"Executing {list(command)} in pod {namespace}/{pod}")

        kwargs: dict[str, Any] = {
            "command": list(command),
            "stdin": False,
            "stdout": True,
            "stderr": True,
            "tty": False,
            "_preload_content": False,
        }
        if container:
            kwargs["container"] = container

        try:
            client = stream(
                self.core_v1.connect_get_namespaced_pod_exec,
                pod,
                namespace,
                **kwargs,
            )
        except ApiException as e:
            raise ExecChannelError(pod, namespace, f"{e.status} {e.reason}") from e
        except Exception as e:
            raise ExecChannelError(pod, namespace, str(e)) from e

        try:
            client.run_forever(timeout=None)
            stdout = _as_text(client.read_stdout())
            stderr = _as_text(client.read_stderr())
            raw_status = client.read_channel(ERROR_CHANNEL)
        except Exception as e:
            raise ExecChannelError(pod, namespace, str(e)) from e
        finally:
            client.close()

        outcome = classify_exec_status(raw_status, stdout, stderr)
        logger.debug(f"Command in pod {namespace}/{pod} finished: {type(outcome).__name__}")
        return outcome
