"""Pydantic models for session requests, CAPTCHA challenges, and results."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import pydantic
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ..session_manager.errors import ErrorKind, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


SYNC_FIELDS = ("user", "pass", "code")
ASYNC_FIELDS = ("request_id", "webhook_url", "user", "pass", "code")


class SessionRequest(BaseModel):
    """One caller's request for a WashAssist session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, coerce_numbers_to_str=True)

    identity: str = Field(alias="user", min_length=1)
    secret: SecretStr = Field(alias="pass")
    tenant_code: str = Field(alias="code", min_length=1)
    correlation_id: str = Field(default_factory=lambda: uuid.uuid4().hex, alias="request_id")
    callback_address: Optional[str] = Field(default=None, alias="webhook_url")

    @classmethod
    def from_body(cls, body: Any) -> "SessionRequest":
        """Validate a ``POST /session`` body.

        Raises:
            ValidationError: If any of user, pass, code is missing or empty.
        """
        _require(body, SYNC_FIELDS)
        return cls._validate(body)

    @classmethod
    def from_async_body(cls, body: Any) -> "SessionRequest":
        """Validate a ``POST /session-async`` body, including the callback URL."""
        _require(body, ASYNC_FIELDS)
        parsed = urlparse(str(_lookup(body, "webhook_url")))
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Invalid webhook_url format")
        return cls._validate(body)

    @classmethod
    def _validate(cls, body: Mapping) -> "SessionRequest":
        try:
            return cls.model_validate(dict(body))
        except pydantic.ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            raise ValidationError(f"Invalid fields: {fields}") from e


# Wire name to field name; either spelling is accepted.
FIELD_NAMES = {
    "user": "identity",
    "pass": "secret",
    "code": "tenant_code",
    "request_id": "correlation_id",
    "webhook_url": "callback_address",
}


def _lookup(body: Mapping, wire_name: str) -> Any:
    return body.get(wire_name) or body.get(FIELD_NAMES[wire_name])


def _require(body: Any, fields: tuple[str, ...]) -> None:
    if not isinstance(body, Mapping):
        raise ValidationError("Invalid JSON body")
    missing = [f for f in fields if not _lookup(body, f)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(fields)}")


class CaptchaChallenge(BaseModel):
    """A reCAPTCHA challenge and, once solved, its token.

    ``valid_until`` is the upstream deadline for using the token; after it the
    token is worthless and must not be submitted.
    """

    model_config = ConfigDict(frozen=True)

    site_key: str
    issued_at: datetime
    valid_until: datetime
    task_id: Optional[str] = None
    token: Optional[str] = None

    @classmethod
    def issue(cls, site_key: str, validity_seconds: float) -> "CaptchaChallenge":
        now = utcnow()
        return cls(site_key=site_key, issued_at=now, valid_until=now + timedelta(seconds=validity_seconds))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.valid_until


class CookieSet(BaseModel):
    """Required session cookies taken from a single browser reading."""

    model_config = ConfigDict(frozen=True)

    cookies: dict[str, str]

    @classmethod
    def from_observation(cls, raw: list[dict], required: tuple[str, ...]) -> tuple["CookieSet", list[str]]:
        """Filter one cookie reading down to ``required``.

        Returns the filtered set and the names it lacks, in ``required`` order.
        """
        seen = {c["name"]: c.get("value", "") for c in raw if c.get("name") in required}
        ordered = {name: seen[name] for name in required if name in seen}
        missing = [name for name in required if name not in seen]
        return cls(cookies=ordered), missing

    def to_jar(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


class SessionFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    state: str = ""


class SessionResult(BaseModel):
    """Terminal outcome of one login attempt."""

    model_config = ConfigDict(frozen=True)

    cookies: list[str] = Field(default_factory=list)
    expires: Optional[str] = None
    failure: Optional[SessionFailure] = None

    @property
    def success(self) -> bool:
        return self.failure is None

    @classmethod
    def succeeded(cls, cookie_set: CookieSet, ttl_minutes: int) -> "SessionResult":
        expires = isoformat(utcnow() + timedelta(minutes=ttl_minutes))
        return cls(cookies=[cookie_set.to_jar()], expires=expires)

    @classmethod
    def failed(cls, kind: ErrorKind, message: str, state: str = "") -> "SessionResult":
        return cls(failure=SessionFailure(kind=kind, message=message, state=state))

    def to_webhook_payload(self, request_id: str) -> dict:
        if self.failure is None:
            return {
                "request_id": request_id,
                "success": True,
                "cookies": self.cookies,
                "expires": self.expires,
            }
        return {
            "request_id": request_id,
            "success": False,
            "error": f"Authentication failed: {self.failure.message}",
        }
