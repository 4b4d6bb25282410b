"""Application configuration loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .constants import (
    ANTI_CAPTCHA_BASE,
    DEFAULT_USER_AGENT,
    REQUIRED_COOKIES,
    WASHASSIST_BASE,
    WASHASSIST_LOGIN_URL,
)

load_dotenv()


class _EnvSettings(BaseSettings):
    # Each field names its variable through validation_alias; constructor
    # keywords may use either the variable or the field name.
    model_config = SettingsConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        env_ignore_empty=True,
    )


class SolverSettings(_EnvSettings):
    api_key: str = Field("", validation_alias=AliasChoices("ANTI_CAPTCHA_KEY", "anti_key"))
    base_url: str = Field(ANTI_CAPTCHA_BASE, validation_alias="ANTI_CAPTCHA_URL")
    website_url: str = Field(WASHASSIST_LOGIN_URL, validation_alias="CAPTCHA_WEBSITE_URL")
    task_type: str = "NoCaptchaTaskProxyless"
    poll_interval: float = Field(3.0, gt=0, validation_alias="CAPTCHA_POLL_INTERVAL")
    max_attempts: int = Field(20, ge=1, validation_alias="CAPTCHA_MAX_ATTEMPTS")
    # Polling budget, measured from before task submission.
    max_wait: float = Field(90.0, gt=0, validation_alias="CAPTCHA_MAX_WAIT")
    # How long the upstream accepts a solved token.
    token_validity: float = Field(120.0, gt=0, validation_alias="CAPTCHA_TOKEN_VALIDITY")
    request_timeout: float = Field(15.0, gt=0, validation_alias="CAPTCHA_REQUEST_TIMEOUT")

    @model_validator(mode="after")
    def _budget_inside_validity(self) -> "SolverSettings":
        if self.max_wait >= self.token_validity:
            raise ValueError(
                f"CAPTCHA_MAX_WAIT ({self.max_wait}s) must be shorter than "
                f"CAPTCHA_TOKEN_VALIDITY ({self.token_validity}s)"
            )
        return self


class BrowserSettings(_EnvSettings):
    engine: Literal["camoufox", "chromium"] = Field("camoufox", validation_alias="BROWSER_ENGINE")
    headless: bool = Field(True, validation_alias="BROWSER_HEADLESS")
    # None means detect from the hosting environment.
    deployment: Optional[Literal["local", "container", "serverless"]] = Field(
        None, validation_alias="BROWSER_DEPLOYMENT"
    )
    executable_path: Optional[str] = Field(None, validation_alias="BROWSER_EXECUTABLE_PATH")
    proxy_url: Optional[str] = Field(None, validation_alias="PROXY_URL")
    user_agent: str = Field(DEFAULT_USER_AGENT, validation_alias="USER_AGENT")
    timeout_ms: int = Field(30000, gt=0, validation_alias="BROWSER_TIMEOUT")


class LoginSettings(_EnvSettings):
    entry_url: str = Field(WASHASSIST_BASE, validation_alias="WASHASSIST_URL")
    navigation_timeout: float = Field(15.0, gt=0, validation_alias="NAVIGATION_TIMEOUT")
    post_injection_delay: float = Field(1.0, ge=0)
    settle_delay: float = Field(2.0, ge=0)
    evaluate_timeout: float = Field(15.0, gt=0)
    session_ttl_minutes: int = Field(25, ge=1, validation_alias="SESSION_TTL_MINUTES")
    debug_screenshot_dir: Optional[str] = Field(None, validation_alias="DEBUG_SCREENSHOT_DIR")


class HarvestSettings(_EnvSettings):
    # Comma-separated in the environment.
    required_cookies: Annotated[tuple[str, ...], NoDecode] = Field(
        REQUIRED_COOKIES, min_length=1, validation_alias="REQUIRED_COOKIES"
    )
    poll_interval: float = Field(0.5, gt=0, validation_alias="COOKIE_POLL_INTERVAL")
    max_attempts: int = Field(20, ge=1, validation_alias="COOKIE_MAX_ATTEMPTS")

    @field_validator("required_cookies", mode="before")
    @classmethod
    def _split_names(cls, value):
        if isinstance(value, str):
            return tuple(name.strip() for name in value.split(",") if name.strip())
        return value


class WebhookSettings(_EnvSettings):
    timeout: float = Field(10.0, gt=0, validation_alias="WEBHOOK_TIMEOUT")
    verify_tls: bool = Field(True, validation_alias="WEBHOOK_VERIFY_TLS")


class ServerSettings(_EnvSettings):
    host: str = Field("0.0.0.0", validation_alias="HOST")
    port: int = Field(3000, ge=1, le=65535, validation_alias="PORT")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    api_key: Optional[str] = Field(None, validation_alias="API_KEY")
    rate_limit_per_minute: int = Field(30, ge=0, validation_alias="RATE_LIMIT_PER_MINUTE")  # 0 disables


class Settings(BaseModel):
    """Everything the service needs, resolved once at startup."""

    model_config = ConfigDict(frozen=True)

    solver: SolverSettings = Field(default_factory=SolverSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    login: LoginSettings = Field(default_factory=LoginSettings)
    harvest: HarvestSettings = Field(default_factory=HarvestSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build validated settings from the process environment.

    Variables in ``environ``, when given, take precedence over the process
    environment. Empty values count as unset.

    Raises pydantic.ValidationError on invalid values.
    """
    overrides = {name: value for name, value in (environ or {}).items() if value != ""}
    return Settings(
        solver=SolverSettings(**overrides),
        browser=BrowserSettings(**overrides),
        login=LoginSettings(**overrides),
        harvest=HarvestSettings(**overrides),
        webhook=WebhookSettings(**overrides),
        server=ServerSettings(**overrides),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
