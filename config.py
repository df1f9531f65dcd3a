"""Application configuration and workflow timings."""

from dataclasses import dataclass


@dataclass
class PassTimings:
    """Centralized validity windows for visitor requests."""

    request_ttl_secs: int = 10 * 60
    token_ttl_secs: int = 10 * 60
    render_timeout_secs: float = 20.0
    sweep_interval_secs: float = 30.0


PASS_TIMINGS = PassTimings()

DEFAULT_CONFIG = {
    "visitor_code_prefix": "LOGIC",
    "code_retry_limit": 5,
    "request_ttl_secs": PASS_TIMINGS.request_ttl_secs,
    "token_ttl_secs": PASS_TIMINGS.token_ttl_secs,
    "render_timeout_secs": PASS_TIMINGS.render_timeout_secs,
    "sweep_interval_secs": PASS_TIMINGS.sweep_interval_secs,
    "base_url": "http://localhost:8000",
    "default_host": "Host",
    "default_host_email": "",
    "hosts": {},
    "branding": {"company_name": "LogicLens", "print_layout": "A4"},
    "email": {},
    "redis_url": "redis://localhost:6379/0",
    "log_level": "INFO",
}

# Global configuration object to share across modules. Default settings may be
# injected at runtime by ``set_config``.
config = DEFAULT_CONFIG.copy()


# set_config routine
def set_config(cfg: dict) -> None:
    """Replace the global configuration with ``cfg``.

    Missing keys fall back to :data:`DEFAULT_CONFIG` so callers can rely on
    every workflow setting being present.
    """

    config.clear()
    config.update(DEFAULT_CONFIG)
    config.update(cfg)

    # Keep centralized timings in sync with overrides
    PASS_TIMINGS.request_ttl_secs = int(
        config.get("request_ttl_secs", PASS_TIMINGS.request_ttl_secs)
    )
    PASS_TIMINGS.token_ttl_secs = int(
        config.get("token_ttl_secs", PASS_TIMINGS.token_ttl_secs)
    )
    PASS_TIMINGS.render_timeout_secs = float(
        config.get("render_timeout_secs", PASS_TIMINGS.render_timeout_secs)
    )
    PASS_TIMINGS.sweep_interval_secs = float(
        config.get("sweep_interval_secs", PASS_TIMINGS.sweep_interval_secs)
    )
