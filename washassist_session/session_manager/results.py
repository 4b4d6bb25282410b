"""Map session outcomes to HTTP status codes and response bodies."""

from __future__ import annotations

from typing import NamedTuple, Optional

from ..models.session import SessionFailure, SessionResult
from .errors import ErrorKind

INTERNAL_ERROR = "Internal server error"


class Outcome(NamedTuple):
    status: int
    # None means "pass the failure's own message through".
    message: Optional[str]


# Must cover every ErrorKind. WEBHOOK_DELIVERY never reaches a caller since
# the notifier swallows it; it is listed to keep the table total.
OUTCOMES: dict[ErrorKind, Outcome] = {
    ErrorKind.VALIDATION: Outcome(400, None),
    ErrorKind.CREDENTIAL: Outcome(400, "Invalid credentials"),
    ErrorKind.NAVIGATION: Outcome(500, INTERNAL_ERROR),
    ErrorKind.CHALLENGE_NOT_FOUND: Outcome(500, INTERNAL_ERROR),
    ErrorKind.SOLVER_REJECTED: Outcome(500, INTERNAL_ERROR),
    ErrorKind.UNEXPECTED_STATUS: Outcome(500, INTERNAL_ERROR),
    ErrorKind.CAPTCHA_TIMEOUT: Outcome(428, "Captcha solver timed out"),
    ErrorKind.CAPTCHA_INJECTION: Outcome(500, INTERNAL_ERROR),
    ErrorKind.TWO_FACTOR_REQUIRED: Outcome(428, None),
    ErrorKind.MISSING_COOKIES: Outcome(500, "Authentication cookies not received - login may have failed"),
    ErrorKind.BROWSER: Outcome(500, INTERNAL_ERROR),
    ErrorKind.WEBHOOK_DELIVERY: Outcome(500, INTERNAL_ERROR),
    ErrorKind.INTERNAL: Outcome(500, INTERNAL_ERROR),
}


def failure_response(failure: SessionFailure) -> tuple[int, dict]:
    outcome = OUTCOMES[failure.kind]
    return outcome.status, {"error": outcome.message or failure.message}


def to_response(result: SessionResult) -> tuple[int, dict]:
    """Status code and JSON body for a ``POST /session`` reply."""
    if result.failure is not None:
        return failure_response(result.failure)
    return 200, {"cookies": result.cookies, "expires": result.expires}
