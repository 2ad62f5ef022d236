"""
Engine Configuration

Environment-based settings for the session engine. Values are read from
UMS_* environment variables; a local .env file is loaded first so that
development setups do not need exported variables.

Usage:
    settings = settings_from_env()
    engine = SessionOrchestrator(settings)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass
class EngineSettings:
    """
    Configuration for the session engine.

    Attributes:
        api_base_url: Base URL of the REST gateway (domains, tokens, users, uploads)
        http_timeout_seconds: Timeout for each REST round trip
        socket_retries: Reconnect attempts allowed over a connection's lifetime
        retry_delay_seconds: Fixed delay between reconnect attempts
        heartbeat_interval_seconds: GetClock interval while the socket is open
        settle_delay_seconds: Debounce before the session is revealed
        first_message_delay_seconds: Delay before a buffered first message is flushed
        history_reset_delay_seconds: Delay between closing the dialog and resetting the token on clear history
        secure_form_timeout_ms: Lifetime of a secure form invitation
        script_timer_seconds: Countdown between scripted consumer lines
        group_messages: Merge adjacent text messages into bubbles
        max_queue_size: Outbound frame queue depth before backpressure
        time_zone: Time zone reported in the init frame's client properties
    """
    api_base_url: str = "http://localhost:3000/api"
    http_timeout_seconds: float = 10.0
    socket_retries: int = 1
    retry_delay_seconds: float = 2.0
    heartbeat_interval_seconds: float = 60.0
    settle_delay_seconds: float = 0.1
    first_message_delay_seconds: float = 1.0
    history_reset_delay_seconds: float = 1.0
    secure_form_timeout_ms: int = 60000
    script_timer_seconds: float = 3.0
    group_messages: bool = True
    max_queue_size: int = 200
    time_zone: str = "UTC"


def settings_from_env(load_env_file: bool = True) -> EngineSettings:
    """
    Create EngineSettings from environment variables.

    Environment variables:
        UMS_API_BASE_URL: REST gateway base URL
        UMS_HTTP_TIMEOUT: REST timeout in seconds
        UMS_SOCKET_RETRIES: Reconnect attempts
        UMS_RETRY_DELAY: Reconnect delay in seconds
        UMS_HEARTBEAT_INTERVAL: Heartbeat interval in seconds
        UMS_SETTLE_DELAY: Reveal debounce in seconds
        UMS_FIRST_MESSAGE_DELAY: First message flush delay in seconds
        UMS_HISTORY_RESET_DELAY: Clear history token reset delay in seconds
        UMS_SECURE_FORM_TIMEOUT_MS: Secure form lifetime in milliseconds
        UMS_SCRIPT_TIMER: Script countdown in seconds
        UMS_GROUP_MESSAGES: "false" to disable bubble grouping
        UMS_MAX_QUEUE_SIZE: Outbound queue depth
        UMS_TIME_ZONE: Time zone reported to the backend
    """
    if load_env_file:
        load_dotenv()

    defaults = EngineSettings()
    return EngineSettings(
        api_base_url=os.getenv("UMS_API_BASE_URL", defaults.api_base_url),
        http_timeout_seconds=float(os.getenv("UMS_HTTP_TIMEOUT", str(defaults.http_timeout_seconds))),
        socket_retries=int(os.getenv("UMS_SOCKET_RETRIES", str(defaults.socket_retries))),
        retry_delay_seconds=float(os.getenv("UMS_RETRY_DELAY", str(defaults.retry_delay_seconds))),
        heartbeat_interval_seconds=float(
            os.getenv("UMS_HEARTBEAT_INTERVAL", str(defaults.heartbeat_interval_seconds))
        ),
        settle_delay_seconds=float(os.getenv("UMS_SETTLE_DELAY", str(defaults.settle_delay_seconds))),
        first_message_delay_seconds=float(
            os.getenv("UMS_FIRST_MESSAGE_DELAY", str(defaults.first_message_delay_seconds))
        ),
        history_reset_delay_seconds=float(
            os.getenv("UMS_HISTORY_RESET_DELAY", str(defaults.history_reset_delay_seconds))
        ),
        secure_form_timeout_ms=int(
            os.getenv("UMS_SECURE_FORM_TIMEOUT_MS", str(defaults.secure_form_timeout_ms))
        ),
        script_timer_seconds=float(os.getenv("UMS_SCRIPT_TIMER", str(defaults.script_timer_seconds))),
        group_messages=os.getenv("UMS_GROUP_MESSAGES", "true").lower() != "false",
        max_queue_size=int(os.getenv("UMS_MAX_QUEUE_SIZE", str(defaults.max_queue_size))),
        time_zone=os.getenv("UMS_TIME_ZONE", defaults.time_zone),
    )


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure root logging the way the engine's entry points expect."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
