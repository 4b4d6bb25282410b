"""Typed failures raised while acquiring a WashAssist session.

Each exception class carries an ``ErrorKind``. The HTTP boundary picks the
response status from the kind alone (see ``results.py``), never from the
message text.
"""

from __future__ import annotations

import enum
from typing import Iterable


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    CREDENTIAL = "credential"
    NAVIGATION = "navigation"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    SOLVER_REJECTED = "solver_rejected"
    UNEXPECTED_STATUS = "unexpected_status"
    CAPTCHA_TIMEOUT = "captcha_timeout"
    CAPTCHA_INJECTION = "captcha_injection"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    MISSING_COOKIES = "missing_cookies"
    BROWSER = "browser"
    WEBHOOK_DELIVERY = "webhook_delivery"
    INTERNAL = "internal"


class SessionError(Exception):
    """Base class for every expected failure of a login attempt."""

    kind: ErrorKind = ErrorKind.INTERNAL


class ValidationError(SessionError):
    kind = ErrorKind.VALIDATION


class CredentialError(SessionError):
    kind = ErrorKind.CREDENTIAL


class NavigationError(SessionError):
    kind = ErrorKind.NAVIGATION


class ChallengeNotFoundError(SessionError):
    kind = ErrorKind.CHALLENGE_NOT_FOUND


class SolverRejectedError(SessionError):
    kind = ErrorKind.SOLVER_REJECTED


class UnexpectedStatusError(SessionError):
    kind = ErrorKind.UNEXPECTED_STATUS


class CaptchaTimeoutError(SessionError):
    kind = ErrorKind.CAPTCHA_TIMEOUT


class CaptchaInjectionError(SessionError):
    kind = ErrorKind.CAPTCHA_INJECTION


class TwoFactorRequiredError(SessionError):
    """The account has a second factor enabled.

    Not retryable: the caller has to disable or complete it out-of-band.
    """

    kind = ErrorKind.TWO_FACTOR_REQUIRED


class MissingCookiesError(SessionError):
    kind = ErrorKind.MISSING_COOKIES

    def __init__(self, missing: Iterable[str], waited_ms: int):
        self.missing = list(missing)
        self.waited_ms = waited_ms
        super().__init__(
            f"Missing required cookies after {waited_ms}ms: {', '.join(self.missing)}"
        )


class BrowserError(SessionError):
    kind = ErrorKind.BROWSER


class WebhookDeliveryError(SessionError):
    kind = ErrorKind.WEBHOOK_DELIVERY
