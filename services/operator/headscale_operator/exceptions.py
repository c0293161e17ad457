"""Operator errors."""

from headscale_k8s import ExecFailure, ExecOutcome


class OperatorError(Exception):
    """Base exception for operator errors."""


class AdminError(OperatorError):
    """An administrative command could not be completed."""


class NoTargetPodError(AdminError):
    """No ready Headscale pod is available to run a command in."""

    def __init__(self, instance: str, namespace: str):
        self.instance = instance
        self.namespace = namespace
        super().__init__(f"no ready pod found for headscale instance {namespace}/{instance}")


class AdminCommandError(AdminError):
    """The headscale CLI did not report success."""

    def __init__(self, command: list[str], outcome: ExecOutcome):
        self.command = command
        self.outcome = outcome
        super().__init__(f"command {' '.join(command)!r} did not succeed: {outcome}")

    @property
    def is_not_found(self) -> bool:
        """True if the command failed because its target does not exist."""
        return isinstance(self.outcome, ExecFailure) and "not found" in self.outcome.stderr.lower()


class AdminResponseError(AdminError):
    """The headscale CLI printed output that could not be decoded."""

    def __init__(self, command: list[str], output: str, reason: str):
        self.command = command
        self.output = output
        super().__init__(f"unexpected output from {' '.join(command)!r}: {reason}")


class ResolutionError(OperatorError):
    """A referenced custom resource does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        self.kind = kind
        self.namespace = namespace
        self.name = name
        super().__init__(f"referenced {kind} {namespace}/{name} not found")


class MissingIdentifierError(OperatorError):
    """A referenced user has not been created in Headscale yet."""

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        super().__init__(f"user {namespace}/{name} has no Headscale identifier yet")


class RenderError(OperatorError):
    """A custom resource cannot be rendered into cluster objects."""
