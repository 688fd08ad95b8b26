"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants (see spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import DEFAULT_CONNECT_TIMEOUT_S, DEFAULT_LISTEN_HOST, DEFAULT_PORT


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup, then overlaid with command-line
    arguments via dataclasses.replace(). Passed downward to server.main.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    listen_host: str
    port: int
    connect_timeout_s: float

    # ------------------------------------------------------------------
    # Mode (filled in from the command line)
    # ------------------------------------------------------------------

    mode: str = "srv"
    host: str | None = None

    @property
    def is_server_mode(self) -> bool:
        return self.mode == "srv"

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "0") == "1",

            listen_host=os.environ.get("CHAT_LISTEN_HOST", DEFAULT_LISTEN_HOST),
            port=int(os.environ.get("CHAT_PORT", str(DEFAULT_PORT))),
            connect_timeout_s=float(
                os.environ.get("CHAT_CONNECT_TIMEOUT_S", str(DEFAULT_CONNECT_TIMEOUT_S))
            ),
        )
