"""
Error taxonomy shared by the AI core and the container/item services.

Structural and identity errors (not found, permission, configuration,
provider outages) propagate to the caller. ValidationFailure on model
output is raised internally by the parser and never leaves it.
"""

from typing import List, Optional


class ContextSpaceError(Exception):
    """Base class for all errors raised by this package."""

    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ProviderUnavailable(ContextSpaceError):
    """Vendor endpoint unreachable, timed out, or returned a non-success status."""

    status_code = 502

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}", detail={"provider": provider})
        self.provider = provider


class NotSupported(ContextSpaceError):
    """The vendor lacks the requested capability (e.g. embeddings)."""

    status_code = 400

    def __init__(self, provider: str, capability: str):
        super().__init__(
            f"{provider} does not support {capability}",
            detail={"provider": provider, "capability": capability},
        )
        self.provider = provider
        self.capability = capability


class ConfigurationError(ContextSpaceError):
    """Required credentials or endpoints are missing."""

    status_code = 500

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message, detail={"missing": missing or []})
        self.missing = missing or []


class NotFound(ContextSpaceError):
    status_code = 404

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found", detail={"kind": kind, "id": identifier})
        self.kind = kind
        self.identifier = identifier


class ValidationFailure(ContextSpaceError):
    """Malformed input or model output that does not match the expected shape."""

    status_code = 422

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, detail={"errors": errors or []})
        self.errors = errors or []


class PermissionDenied(ContextSpaceError):
    status_code = 403


class StructuralError(ContextSpaceError):
    """Operation would break the container tree (children present, cycles)."""

    status_code = 409
