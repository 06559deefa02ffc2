"""
Custom exceptions for template build operations.

This module defines all custom exceptions used throughout the template build system.
"""

from typing import Iterable, Optional


class PactError(Exception):
    """Base exception for template build operations."""

    def __init__(self, message: str, error_code: int = 1000) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class ConfigurationError(PactError):
    """Configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code=1001)


class ConnectionError(PactError):
    """Connection-related errors."""

    def __init__(self, message: str, host: str) -> None:
        super().__init__(f"Connection error to {host}: {message}", error_code=1002)
        self.host = host


class ValidationError(PactError):
    """Validation errors."""

    def __init__(self, message: str, validation_type: str = "general") -> None:
        super().__init__(
            f"Validation error ({validation_type}): {message}", error_code=1007
        )
        self.validation_type = validation_type


class SSHError(PactError):
    """SSH-related errors."""

    def __init__(self, message: str, host: str, operation: str = "connection") -> None:
        super().__init__(
            f"SSH error on {host} during {operation}: {message}", error_code=1009
        )
        self.host = host
        self.operation = operation


class AuthenticationError(PactError):
    """Authentication errors."""

    def __init__(self, message: str, host: str, auth_method: str = "key") -> None:
        super().__init__(
            f"Authentication failed for {host} using {auth_method}: {message}",
            error_code=1010,
        )
        self.host = host
        self.auth_method = auth_method


class TimeoutError(PactError):
    """Timeout errors."""

    def __init__(self, message: str, operation: str, timeout: int) -> None:
        super().__init__(
            f"Timeout during {operation} after {timeout}s: {message}", error_code=1012
        )
        self.operation = operation
        self.timeout = timeout


class OperationCancelledError(PactError):
    """Build cancelled at a phase boundary."""

    def __init__(self, distro_id: str, stage: str) -> None:
        super().__init__(
            f"Build of {distro_id} cancelled after {stage}", error_code=1013
        )
        self.distro_id = distro_id
        self.stage = stage


class SelectionError(PactError):
    """Distribution selection could not be resolved."""

    def __init__(self, message: str, error_code: int = 2000) -> None:
        super().__init__(message, error_code=error_code)


class UnknownTokenError(SelectionError):
    """Selection referenced distributions or groups that do not exist."""

    def __init__(self, tokens: Iterable[str]) -> None:
        self.tokens = list(tokens)
        super().__init__(
            f"Unknown distribution or group: {', '.join(self.tokens)}",
            error_code=2001,
        )


class EmptySelectionError(SelectionError):
    """Selection resolved to no distributions."""

    def __init__(self, raw: str = "") -> None:
        super().__init__(
            f"Selection '{raw}' resolved to no distributions", error_code=2002
        )
        self.raw = raw


class IdentifierInUseError(PactError):
    """A target VM identifier is already taken on the hypervisor."""

    def __init__(self, identifier: int, distro_id: str, phase: str) -> None:
        super().__init__(
            f"VMID {identifier} for {distro_id} ({phase} template) is already in use; "
            "pass --rebuild to destroy and recreate it",
            error_code=3001,
        )
        self.identifier = identifier
        self.distro_id = distro_id
        self.phase = phase


class ExternalToolError(PactError):
    """An external tool (curl, virt-customize, qm, packer) failed."""

    def __init__(
        self,
        message: str,
        distro_id: Optional[str] = None,
        stage: str = "unknown",
        step: Optional[str] = None,
        error_code: int = 4001,
    ) -> None:
        where = f"{distro_id} during {stage}" if distro_id else stage
        if step:
            where = f"{where} ({step})"
        super().__init__(f"External tool error for {where}: {message}", error_code)
        self.distro_id = distro_id
        self.stage = stage
        self.step = step


class DestroyError(ExternalToolError):
    """Tearing down a VM identifier failed."""

    def __init__(self, identifier: int, message: str) -> None:
        super().__init__(
            message, stage="destroy", step=f"qm destroy {identifier}", error_code=4002
        )
        self.identifier = identifier
