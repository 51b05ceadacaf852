"""
Error taxonomy for the RKE1 operator.

Every component raises one of these instead of logging and continuing.
The controller turns them into status conditions and retry scheduling,
and the HTTP API turns them into error responses.
"""

from typing import Optional


class OperatorError(Exception):
    """Base class for all operator errors."""


class TransportError(OperatorError):
    """The request never produced an HTTP response (DNS, connect, TLS, reset)."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class RemoteError(OperatorError):
    """The remote API answered with a status outside the expected set."""

    def __init__(self, status: int, body: str, operation: Optional[str] = None):
        self.status = status
        self.body = body
        self.operation = operation
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}unexpected status {status}: {body}")

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class DecodeError(OperatorError):
    """A successful response carried a body that could not be decoded."""

    def __init__(self, message: str, body: str = "", operation: Optional[str] = None):
        self.body = body
        self.operation = operation
        super().__init__(message)


class NotFoundError(OperatorError):
    """A symbolic reference did not match any remote object."""

    def __init__(self, reference_kind: str, reference: str):
        self.reference_kind = reference_kind
        self.reference = reference
        super().__init__(f"{reference_kind} not found: {reference}")


class ConfigNotFoundError(OperatorError):
    """The referenced ProviderConfig does not exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"cannot get ProviderConfig: {name}")


class CredentialResolutionError(OperatorError):
    """A credential could not be extracted from its declared source."""


class ExternalIdentifierMissingError(OperatorError):
    """An operation needs status.atProvider.id but it has not been observed yet."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name} has no remote identifier in status")


class ObjectNotFoundError(OperatorError):
    """The object store has no object under the requested key."""

    def __init__(self, kind: str, name: str, namespace: str = ""):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        key = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {key} not found")


class ObjectExistsError(OperatorError):
    """The object store already has an object under the requested key."""

    def __init__(self, kind: str, name: str, namespace: str = ""):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        key = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {key} already exists")
