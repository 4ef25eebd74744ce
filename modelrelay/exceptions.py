"""
Custom exception hierarchy for modelrelay.

Structured error handling with clear categories:
- Configuration errors (caught at startup)
- Credential errors (fatal, never retried)
- Provider errors (backend unreachable, auth rejected, request rejected)
- Timeouts (global ceiling exceeded)
- Tool execution errors (scoped to a single tool call)
- Fallback exhaustion (primary and backup both failed)

Usage:
    from modelrelay.exceptions import ProviderUnavailableError

    try:
        raw = await client.post(url, json=payload)
    except httpx.ConnectError as e:
        raise ProviderUnavailableError(
            "Ollama is not reachable", provider="ollama", model=model
        ) from e
"""

from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """
    Base exception for all modelrelay errors.

    All custom exceptions inherit from this, so you can catch
    `RelayError` to handle any library-specific error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(RelayError):
    """
    Raised when settings cannot be loaded or fail validation.

    Examples:
    - Malformed YAML settings file
    - Non-numeric RELAY_REQUEST_TIMEOUT
    """

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.config_path = config_path


class MissingCredentialError(RelayError):
    """
    Raised before any network call when a provider has no usable API key.

    Never retried: a backup model on the same provider would fail the
    same way, and one on another provider would hide the misconfiguration.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        env_var: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider
        self.env_var = env_var


# ── Provider Errors ───────────────────────────────────────────────


class ProviderError(RelayError):
    """
    Raised when a backend call fails.

    Concrete subclasses say why; catch this to handle any of them.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider = provider
        self.model = model
        self.status_code = status_code


class ProviderUnavailableError(ProviderError):
    """
    The backend could not be reached or is temporarily failing
    (connection refused, socket timeout, rate limit, 5xx).
    """


class AuthenticationRejectedError(ProviderError):
    """The backend refused the credential (401/403)."""


class BackendRejectedRequestError(ProviderError):
    """
    The backend refused the request itself: unsupported parameter,
    unknown model id, empty prompt.
    """


# ── Timeouts ──────────────────────────────────────────────────────


class RequestTimedOutError(RelayError):
    """
    Raised when a call exceeds the global timeout ceiling.

    The in-flight request is no longer awaited; a late response is
    discarded.
    """

    def __init__(
        self,
        message: str,
        *,
        model: Optional[str] = None,
        timeout_seconds: float = 0.0,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.model = model
        self.timeout_seconds = timeout_seconds


# ── Tool Execution ────────────────────────────────────────────────


class ToolExecutionError(RelayError):
    """
    Raised by a tool executor when one function call fails.

    The tool-call driver absorbs it into that call's ToolResult.error;
    it never aborts sibling calls or reaches the caller.
    """

    def __init__(
        self,
        message: str,
        *,
        tool_name: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.tool_name = tool_name


# ── Fallback ──────────────────────────────────────────────────────


class FallbackExhaustedError(RelayError):
    """
    Raised when the primary model failed and the backup failed too, or
    no model other than the primary was left to try.

    Carries both model ids and both underlying exceptions; the backup
    fields are None when no backup was attempted.
    """

    def __init__(
        self,
        message: str,
        *,
        primary_model: Optional[str] = None,
        backup_model: Optional[str] = None,
        primary_error: Optional[BaseException] = None,
        backup_error: Optional[BaseException] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.primary_model = primary_model
        self.backup_model = backup_model
        self.primary_error = primary_error
        self.backup_error = backup_error
