# src/meetbridge_backend/app/core/errors.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    INPUT = "input"          # user-correctable request problems
    POLICY = "policy"        # identity rejected by the access policy
    PROVIDER = "provider"    # upstream OAuth provider / provider config
    INTERNAL = "internal"    # token generation, store


class ErrorKind(str, Enum):
    MISSING_CODE = "missing_code"
    MISSING_STATE = "missing_state"
    MALFORMED_STATE = "malformed_state"
    MISSING_REDIRECT = "missing_redirect"
    MISSING_BACKEND = "missing_backend"
    MALFORMED_REQUEST = "malformed_request"

    EMAIL_NOT_ALLOWED = "email_not_allowed"
    EMAIL_NOT_VERIFIED = "email_not_verified"

    UNSUPPORTED_PROVIDER = "unsupported_provider"
    PROVIDER_CONFIG_ERROR = "provider_config_error"
    IDENTITY_EXCHANGE_FAILED = "identity_exchange_failed"

    ALLOW_LIST_CHECK_FAILED = "allow_list_check_failed"
    TOKEN_GENERATION_FAILED = "token_generation_failed"
    STORE_ERROR = "store_error"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORY[self]


_CATEGORY: Dict[ErrorKind, ErrorCategory] = {
    ErrorKind.MISSING_CODE: ErrorCategory.INPUT,
    ErrorKind.MISSING_STATE: ErrorCategory.INPUT,
    ErrorKind.MALFORMED_STATE: ErrorCategory.INPUT,
    ErrorKind.MISSING_REDIRECT: ErrorCategory.INPUT,
    ErrorKind.MISSING_BACKEND: ErrorCategory.INPUT,
    ErrorKind.MALFORMED_REQUEST: ErrorCategory.INPUT,
    ErrorKind.EMAIL_NOT_ALLOWED: ErrorCategory.POLICY,
    ErrorKind.EMAIL_NOT_VERIFIED: ErrorCategory.POLICY,
    ErrorKind.UNSUPPORTED_PROVIDER: ErrorCategory.PROVIDER,
    ErrorKind.PROVIDER_CONFIG_ERROR: ErrorCategory.PROVIDER,
    ErrorKind.IDENTITY_EXCHANGE_FAILED: ErrorCategory.PROVIDER,
    ErrorKind.ALLOW_LIST_CHECK_FAILED: ErrorCategory.INTERNAL,
    ErrorKind.TOKEN_GENERATION_FAILED: ErrorCategory.INTERNAL,
    ErrorKind.STORE_ERROR: ErrorCategory.INTERNAL,
}

_STATUS: Dict[ErrorCategory, int] = {
    ErrorCategory.INPUT: 400,
    ErrorCategory.POLICY: 400,
    ErrorCategory.PROVIDER: 500,
    ErrorCategory.INTERNAL: 500,
}


class AuthFlowError(Exception):
    """
    Terminal failure of the OAuth callback flow.

    Carries a machine-checkable `kind` (callers branch on it), a human
    message, and optional context for the audit log. The HTTP layer maps
    `status_code` onto the response; nothing in the flow retries.
    """

    def __init__(self, kind: ErrorKind, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    @property
    def status_code(self) -> int:
        return _STATUS[self.category]

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.kind.value, "detail": self.message}

    def __repr__(self) -> str:
        return f"AuthFlowError(kind={self.kind.value!r}, message={self.message!r})"
