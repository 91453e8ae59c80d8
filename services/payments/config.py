# services/payments/config.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Any

REQUIRED_KEYS = (
    "WOMPI_INTEGRITY_KEY",
    "WOMPI_PUBLIC_KEY",
    "WOMPI_URL",
    "WOMPI_PRIVATE_KEY",
    "PAYMENT_TOKEN_SECRET",
)

DEFAULT_TIMEOUT = 10.0


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class GatewayConfig:
    integrity_key: str
    public_key: str
    base_url: str
    private_key: str
    token_secret: str
    events_key: str | None = None
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "GatewayConfig":
        """
        Build the config from Flask config (or any mapping). Every missing
        required key is reported at once; this runs at startup only.
        """
        missing = [k for k in REQUIRED_KEYS if not cfg.get(k)]
        if missing:
            raise ConfigError(
                "Missing required configuration: " + ", ".join(missing))

        raw_timeout = cfg.get("WOMPI_TIMEOUT")
        try:
            timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT
        except (TypeError, ValueError):
            raise ConfigError(f"WOMPI_TIMEOUT must be numeric, got {raw_timeout!r}")
        if timeout <= 0:
            raise ConfigError("WOMPI_TIMEOUT must be positive")

        return cls(
            integrity_key=cfg["WOMPI_INTEGRITY_KEY"],
            public_key=cfg["WOMPI_PUBLIC_KEY"],
            base_url=str(cfg["WOMPI_URL"]).rstrip("/"),
            private_key=cfg["WOMPI_PRIVATE_KEY"],
            token_secret=cfg["PAYMENT_TOKEN_SECRET"],
            events_key=cfg.get("WOMPI_EVENTS_KEY") or None,
            timeout=timeout,
        )
