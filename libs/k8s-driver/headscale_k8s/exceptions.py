"""Kubernetes driver exceptions."""


class DriverError(Exception):
    """Base exception for the Kubernetes driver."""


class ExecChannelError(DriverError):
    """
    The remote execution channel could not be opened or broke mid-stream.

    The effect of the remote command is unknown when this is raised.
    """

    def __init__(self, pod: str, namespace: str, reason: str):
        self.pod = pod
        self.namespace = namespace
        self.reason = reason
        super().__init__(f"exec channel to pod {namespace}/{pod} failed: {reason}")
