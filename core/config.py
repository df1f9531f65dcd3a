"""Configuration loading.

The JSON file is read-only at runtime: settings are layered as defaults,
then the file, then environment overrides.
"""

from __future__ import annotations

import copy
import json
import os
from typing import Any

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

from config import DEFAULT_CONFIG

BRANDING_DEFAULTS = {
    "company_name": "LogicLens",
    "print_layout": "A4",
}


class SmtpSettings(BaseSettings):
    """SMTP settings sourced from the environment."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_user: str | None = None
    smtp_pass: str | None = None
    from_email: str | None = None

    def as_email_config(self) -> dict[str, Any]:
        data = {
            "smtp_host": self.smtp_host,
            "smtp_port": self.smtp_port,
            "smtp_user": self.smtp_user,
            "smtp_pass": self.smtp_pass,
            "from_addr": self.from_email,
        }
        cfg = {k: v for k, v in data.items() if v not in (None, "")}
        if self.smtp_port:
            cfg["use_ssl"] = self.smtp_port == 465
            cfg["use_tls"] = self.smtp_port != 465
        return cfg


# Environment variable -> config key
ENV_OVERRIDES = {
    "REDIS_URL": "redis_url",
    "HOST_DECISION_BASE_URL": "base_url",
    "LOG_LEVEL": "log_level",
}


def _read_config_file(path: str) -> dict:
    if not os.path.exists(path):
        logger.info("Config file {} not found; using defaults", path)
        return {}
    with open(path) as f:
        return json.load(f)


def _apply_defaults(data: dict) -> dict:
    merged = copy.deepcopy(DEFAULT_CONFIG)
    merged.update(data)
    branding = dict(BRANDING_DEFAULTS)
    branding.update(data.get("branding") or {})
    merged["branding"] = branding
    return merged


def _apply_env(data: dict) -> dict:
    for env, key in ENV_OVERRIDES.items():
        value = os.getenv(env)
        if value:
            data[key] = value
    email = dict(data.get("email") or {})
    email.update(SmtpSettings().as_email_config())
    data["email"] = email
    return data


# load_config routine
def load_config(path: str, *, data: dict | None = None) -> dict:
    """Load configuration from ``path``.

    The file is optional. Values are layered as defaults, then file
    contents, then environment variables. When ``data`` is provided it is
    used instead of reading from ``path``.
    """

    if data is None:
        data = _read_config_file(path)
    data = _apply_defaults(data)
    data = _apply_env(data)
    for key in ("request_ttl_secs", "token_ttl_secs", "code_retry_limit"):
        value = data.get(key)
        if not isinstance(value, int) or value <= 0:
            raise ValueError(f"{key} must be a positive integer")
    return data
