"""Exception hierarchy for vmdeck.

Every error raised by the service layer derives from :class:`VMDeckError`
so the action dispatcher and the UI can turn it into a user-facing message
without inspecting libvirt internals.
"""

from typing import Any

import libvirt

# libvirt error codes that mean the connection to the server is gone.
_DISCONNECT_CODES: frozenset[int] = frozenset({
    libvirt.VIR_ERR_NO_CONNECT,
    libvirt.VIR_ERR_INVALID_CONN,
    libvirt.VIR_ERR_RPC,
})

# VIR_ERR_SYSTEM_ERROR only counts when it comes from the transport.
_TRANSPORT_DOMAINS: frozenset[int] = frozenset({
    libvirt.VIR_FROM_RPC,
    libvirt.VIR_FROM_REMOTE,
})


class VMDeckError(Exception):
    """Base error with a machine-readable code and optional details."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class NotConnectedError(VMDeckError):
    """The server connection dropped or was never established."""

    def __init__(self, uri: str, cause: Exception | None = None) -> None:
        super().__init__(
            f"Not connected to {uri}",
            code="NOT_CONNECTED",
            details={"uri": uri},
            cause=cause,
        )
        self.uri = uri


class ValidationError(VMDeckError):
    """User input rejected before anything was sent to the server."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_FAILED",
            details={"field": field} if field else None,
        )
        self.field = field


class VMNotFoundError(VMDeckError):
    """No VM with the requested UUID exists on any connected server."""

    def __init__(self, vm_id: str) -> None:
        super().__init__(
            f"VM '{vm_id}' not found",
            code="VM_NOT_FOUND",
            details={"vm_id": vm_id},
        )
        self.vm_id = vm_id


class SnapshotNotFoundError(VMDeckError):
    """The snapshot does not exist on the VM."""

    def __init__(self, vm_name: str, snapshot_id: str) -> None:
        super().__init__(
            f"Snapshot '{snapshot_id}' not found on '{vm_name}'",
            code="SNAPSHOT_NOT_FOUND",
            details={"vm_name": vm_name, "snapshot_id": snapshot_id},
        )


class OperationError(VMDeckError):
    """A remote operation was accepted but failed."""

    def __init__(self, operation: str, reason: str, cause: Exception | None = None) -> None:
        super().__init__(
            f"{operation} failed: {reason}",
            code="OPERATION_FAILED",
            details={"operation": operation, "reason": reason},
            cause=cause,
        )
        self.operation = operation


def is_disconnect(error: libvirt.libvirtError) -> bool:
    """Check whether a libvirt error means the connection is unusable."""
    code = error.get_error_code()
    if code in _DISCONNECT_CODES:
        return True
    return (
        code == libvirt.VIR_ERR_SYSTEM_ERROR
        and error.get_error_domain() in _TRANSPORT_DOMAINS
    )


def translate(
    error: libvirt.libvirtError,
    uri: str,
    operation: str,
) -> VMDeckError:
    """Convert a libvirt error into the matching vmdeck error."""
    if is_disconnect(error):
        return NotConnectedError(uri, cause=error)
    message = error.get_error_message() or str(error)
    return OperationError(operation, message, cause=error)
