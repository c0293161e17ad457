"""Config manager errors."""


class ConfigManagerError(Exception):
    """Base exception for config manager errors."""


class PolicyDocumentError(ConfigManagerError):
    """The ConfigMap holds a policy document that is not valid JSON."""


class ProcessNotFoundError(ConfigManagerError):
    """No running process matches the expected command line."""

    def __init__(self, prefix: str):
        self.prefix = prefix
        super().__init__(f"no process found with command line starting with {prefix!r}")


class ReloadError(ConfigManagerError):
    """The reload signal could not be delivered."""

    def __init__(self, pid: int, reason: str):
        self.pid = pid
        super().__init__(f"failed to send SIGHUP to pid {pid}: {reason}")
