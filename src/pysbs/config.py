"""Tracker configuration for pysbs."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from typing import Any

from pysbs._constants import DEFAULT_TCP_PORT
from pysbs.exceptions import SbsConfigError
from pysbs.state.policy import CallsignPolicy

_SOURCES = frozenset({"tcp", "mqtt"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(name: str, value: str, convert: Callable[[str], Any]) -> Any:
    try:
        return convert(value.strip())
    except ValueError as exc:
        raise SbsConfigError(f"{name} must be numeric, got {value!r}") from exc


def _ms_to_seconds(value: str) -> float:
    return float(value) / 1000.0


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Tracker configuration.

    Every value is optional; the defaults reproduce the reference
    deployment (2 s publish cadence, 30 s expiry, 5 reconnect attempts).

    Parameters
    ----------
    source : str
        Inbound stream transport, ``"tcp"`` or ``"mqtt"``.
    tcp_host : str
        Host of the BaseStation TCP feed.
    tcp_port : int
        Port of the BaseStation TCP feed (30003 by convention).
    mqtt_host : str
        MQTT broker host when ``source="mqtt"``.
    mqtt_port : int
        MQTT broker port.
    mqtt_topic : str
        Topic carrying raw SBS lines.
    mqtt_username : str or None
        Broker username.
    mqtt_password : str or None
        Broker password.
    mqtt_tls : bool
        Enable TLS towards the broker.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    publish_interval : float
        Seconds between snapshot broadcasts.
    expiry_window : float
        Seconds after which a silent aircraft is no longer visible.
        Must exceed ``publish_interval``.
    send_empty_snapshots : bool
        Broadcast a snapshot even when no aircraft are visible.
    push_incremental : bool
        Push an ``aircraft-data`` payload for each significant update in
        addition to the periodic snapshot.
    callsign_policy : CallsignPolicy
        Which aircraft are surfaced to subscribers.
    stream_retry_delay : float
        Seconds to wait before re-establishing a closed inbound stream.
        ``0`` disables re-establishment.
    subscriber_queue_size : int
        Payloads buffered per subscriber before new ones are skipped.
    max_reconnect_attempts : int
        Subscriber session reconnect cap.
    backoff_base : float
        Subscriber session backoff base in seconds.
    ws_host : str
        Bind address of the WebSocket feed server.
    ws_port : int
        Port of the WebSocket feed server.
    """

    source: str = "tcp"
    tcp_host: str = "localhost"
    tcp_port: int = DEFAULT_TCP_PORT
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_topic: str = "aircraft-data"
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False
    mqtt_keepalive: int = 60
    publish_interval: float = 2.0
    expiry_window: float = 30.0
    send_empty_snapshots: bool = False
    push_incremental: bool = False
    callsign_policy: CallsignPolicy = CallsignPolicy.NON_EMPTY
    stream_retry_delay: float = 5.0
    subscriber_queue_size: int = 16
    max_reconnect_attempts: int = 5
    backoff_base: float = 1.0
    ws_host: str = "0.0.0.0"
    ws_port: int = 8080

    def validate(self) -> TrackerConfig:
        """Check cross-field constraints and return ``self``."""
        if self.source not in _SOURCES:
            raise SbsConfigError(f"source must be one of {sorted(_SOURCES)}, got {self.source!r}")
        if self.publish_interval <= 0:
            raise SbsConfigError("publish_interval must be positive")
        if self.expiry_window <= self.publish_interval:
            raise SbsConfigError(
                f"expiry_window ({self.expiry_window}s) must exceed publish_interval ({self.publish_interval}s)"
            )
        if self.subscriber_queue_size < 1:
            raise SbsConfigError("subscriber_queue_size must be at least 1")
        if self.max_reconnect_attempts < 0:
            raise SbsConfigError("max_reconnect_attempts must not be negative")
        if self.backoff_base <= 0:
            raise SbsConfigError("backoff_base must be positive")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from ``SBS_*`` environment variables.

        Durations are read in milliseconds (``SBS_PUBLISH_INTERVAL_MS``,
        ``SBS_EXPIRY_MS``, ``SBS_STREAM_RETRY_MS``, ``SBS_BACKOFF_BASE_MS``)
        and stored in seconds. Explicit keyword arguments override
        environment values.

        Raises
        ------
        SbsConfigError
            A variable holds an unparseable number or an unknown choice.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "SBS_SOURCE": "source",
            "SBS_TCP_HOST": "tcp_host",
            "SBS_MQTT_HOST": "mqtt_host",
            "SBS_MQTT_TOPIC": "mqtt_topic",
            "SBS_MQTT_USERNAME": "mqtt_username",
            "SBS_MQTT_PASSWORD": "mqtt_password",
            "SBS_WS_HOST": "ws_host",
        }
        _ENV_NUMBER_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "SBS_TCP_PORT": ("tcp_port", int),
            "SBS_MQTT_PORT": ("mqtt_port", int),
            "SBS_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "SBS_PUBLISH_INTERVAL_MS": ("publish_interval", _ms_to_seconds),
            "SBS_EXPIRY_MS": ("expiry_window", _ms_to_seconds),
            "SBS_STREAM_RETRY_MS": ("stream_retry_delay", _ms_to_seconds),
            "SBS_SUBSCRIBER_QUEUE": ("subscriber_queue_size", int),
            "SBS_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
            "SBS_BACKOFF_BASE_MS": ("backoff_base", _ms_to_seconds),
            "SBS_WS_PORT": ("ws_port", int),
        }
        _ENV_BOOL_MAP = {
            "SBS_MQTT_TLS": ("mqtt_tls", False),
            "SBS_SEND_EMPTY": ("send_empty_snapshots", False),
            "SBS_PUSH_INCREMENTAL": ("push_incremental", False),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val.strip()

        for env_key, (field_name, convert) in _ENV_NUMBER_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, convert)

        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        policy_env = env.get("SBS_CALLSIGN_POLICY")
        if policy_env is not None and "callsign_policy" not in overrides:
            try:
                config_kwargs["callsign_policy"] = CallsignPolicy(policy_env.strip().lower())
            except ValueError as exc:
                choices = ", ".join(p.value for p in CallsignPolicy)
                raise SbsConfigError(f"SBS_CALLSIGN_POLICY must be one of {choices}, got {policy_env!r}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs).validate()
