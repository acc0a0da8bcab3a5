#!/usr/bin/env python3
# CUI // SP-CTI
"""Proprion — Structured Exception Hierarchy.

Every failure the provisioning flow can hit is one of these types. None of
them are retryable: a provisioning run either completes or stops at the step
that failed, leaving already-created remote resources in place.

Usage:
    from proprion.errors import ApiError, ProvisioningError

    raise ApiError(403, "permission denied", service="scaleway")
"""

from typing import Optional


class ProprionError(Exception):
    """Base exception for all proprion errors.

    Attributes:
        service: Name of the provider or layer that raised (e.g. "exoscale").
        retryable: Whether the caller should retry the operation.
    """

    def __init__(self, message: str, service: str = "", retryable: bool = False):
        super().__init__(message)
        self.service = service
        self.retryable = retryable


class TransportError(ProprionError):
    """Network or connection failure before a response was received."""


class ApiError(ProprionError):
    """Non-2xx response from a provider API.

    Attributes:
        status: HTTP status code.
        message: Error text, from the JSON ``message`` field when present.
    """

    def __init__(self, status: int, message: str, service: str = ""):
        super().__init__(f"API error: {message} (status: {status})", service=service)
        self.status = status
        self.message = message


class ProtocolError(ProprionError):
    """Response did not have the shape the provider contract promises.

    Examples: async operation without a reference, API key without a secret.
    """


class SigningError(ProprionError):
    """Key material could not be used to sign a request."""


class StorageError(ProprionError):
    """Object storage (bucket or bucket policy) operation failed."""


class ConfigurationError(ProprionError):
    """Configuration error — missing or invalid configuration."""

    def __init__(self, message: str, config_key: str = ""):
        super().__init__(message, service="config", retryable=False)
        self.config_key = config_key


class ValidationError(ProprionError):
    """User-supplied input rejected before any remote call was made."""


class ProvisioningError(ProprionError):
    """A provisioning step failed; the remaining steps were not run.

    Attributes:
        step: Name of the failed step (e.g. "create_api_key").
        provider: Provider name the run was targeting.
        cause: The underlying error.
        principal_id: Id of a principal created earlier in the run and left
            behind, if any.
    """

    def __init__(self, step: str, provider: str, cause: Exception,
                 principal_id: Optional[str] = None):
        message = f"{step} failed on {provider}: {cause}"
        if principal_id:
            message += f" (principal {principal_id} was created and not removed)"
        super().__init__(message, service=provider, retryable=False)
        self.step = step
        self.provider = provider
        self.cause = cause
        self.principal_id = principal_id
