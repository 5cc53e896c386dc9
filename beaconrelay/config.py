"""Configuration loading from YAML."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Optional

import yaml

from .models import (
    AppConfig,
    HttpSinkConfig,
    MqttSinkConfig,
    RateLimitConfig,
    SinkConfig,
    StdoutSinkConfig,
    TlsConfig,
    TransportType,
)

logger = logging.getLogger(__name__)

DEFAULT_ADAPTER = "hci0"
DEFAULT_MQTT_PORT = 8883
DEFAULT_HTTP_TIMEOUT = 30.0
MIN_RATE_LIMIT_SECONDS = 1.0

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_CLIENT_ID_RE = re.compile(r"[0-9a-zA-Z]{0,23}")

_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(ValueError):
    """Raised for invalid configuration values."""


def parse_duration(value: Any) -> float:
    """Parse a duration like ``90s``, ``1m30s`` or ``500ms`` into seconds.

    Plain numbers are taken as seconds.
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"invalid duration: {value!r}")

    pos = 0
    total = 0.0
    for match in _DURATION_PART_RE.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(value):
        raise ConfigError(f"invalid duration: {value!r}")
    return total


def _sink_name(data: dict, kind: str, index: int) -> str:
    return data.get("name") or f"unnamed-{kind}-sink-{index}"


def _sink_entries(sinks_data: dict, kind: str) -> list[tuple[int, dict]]:
    """Get the (index, entry) pairs configured for one sink type."""
    entries = sinks_data.get(kind) or []
    if not isinstance(entries, list):
        raise ConfigError(f"sinks.{kind} must be a list")
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"sinks.{kind}[{i}] must be a mapping, given: {entry!r}")
    return list(enumerate(entries))


def _resolve_path(base_dir: Path, path: str) -> Path:
    p = Path(path)
    if p.is_absolute():
        return p
    return base_dir / p


def _parse_rate_limit(name: str, data: Optional[dict]) -> Optional[RateLimitConfig]:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ConfigError(f"sink {name}: rate_limit must be a mapping")
    try:
        max_1_in = parse_duration(data["max_1_in"])
    except KeyError:
        raise ConfigError(f"sink {name}: rate_limit requires max_1_in") from None
    except ConfigError as e:
        raise ConfigError(f"sink {name}: failed to parse rate limit: {e}") from None
    if max_1_in < MIN_RATE_LIMIT_SECONDS:
        raise ConfigError(f"sink {name}: max_1_in must be at least 1s")
    return RateLimitConfig(max_1_in=max_1_in)


def _parse_stdout_sink(index: int, data: dict) -> StdoutSinkConfig:
    name = _sink_name(data, "stdout", index)
    return StdoutSinkConfig(
        name=name,
        rate_limit=_parse_rate_limit(name, data.get("rate_limit")),
    )


def _parse_mqtt_sink(base_dir: Path, index: int, data: dict) -> MqttSinkConfig:
    name = _sink_name(data, "mqtt", index)

    # See MQTT 3.1.1, section 4.7 Topic Names and Topic Filters
    topic = data.get("topic", "")
    if (
        not isinstance(topic, str)
        or not 1 <= len(topic) <= 65535
        or topic.startswith("$")
        or any(c in topic for c in "+#\u0000")
    ):
        raise ConfigError(f"sink {name}: topic is not a valid MQTT topic name: {topic!r}")

    client_id = str(data.get("client_id", ""))
    if not _CLIENT_ID_RE.fullmatch(client_id):
        raise ConfigError(
            f"sink {name}: client_id must be at most 23 alphanumeric characters: {client_id!r}"
        )

    username = str(data.get("username", ""))
    password = str(data.get("password", ""))
    if len(username) > 65535 or len(password) > 65535:
        raise ConfigError(f"sink {name}: max length of username and password is 65535")

    server_name = data.get("server_name")
    if not server_name:
        raise ConfigError(f"sink {name}: server_name is a required field")

    try:
        server_port = int(data.get("server_port", DEFAULT_MQTT_PORT))
    except (TypeError, ValueError):
        raise ConfigError(f"sink {name}: invalid server_port: {data.get('server_port')!r}") from None

    tls = None
    if data.get("enable_tls", True):
        tls_data = data.get("tls") or {}
        if not isinstance(tls_data, dict):
            raise ConfigError(f"sink {name}: tls must be a mapping")
        ca_certs = tls_data.get("ca_certs")
        tls = TlsConfig(
            ca_certs=_resolve_path(base_dir, ca_certs) if ca_certs else None,
            skip_verify=bool(tls_data.get("skip_verify", False)),
        )
        if tls.ca_certs and not tls.ca_certs.exists():
            raise ConfigError(f"sink {name}: ca_certs file not found: {tls.ca_certs}")

    return MqttSinkConfig(
        name=name,
        topic=topic,
        server_name=server_name,
        server_port=server_port,
        client_id=client_id,
        username=username,
        password=password,
        tls=tls,
        rate_limit=_parse_rate_limit(name, data.get("rate_limit")),
    )


def _parse_http_sink(index: int, data: dict) -> HttpSinkConfig:
    name = _sink_name(data, "http", index)

    url = data.get("url", "")
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        raise ConfigError(f"sink {name}: url must be an http(s) URL: {url!r}")

    headers = data.get("headers") or {}
    if not isinstance(headers, dict):
        raise ConfigError(f"sink {name}: headers must be a mapping")

    try:
        timeout = parse_duration(data.get("timeout", DEFAULT_HTTP_TIMEOUT))
    except ConfigError as e:
        raise ConfigError(f"sink {name}: {e}") from None

    return HttpSinkConfig(
        name=name,
        url=url,
        headers={str(k): str(v) for k, v in headers.items()},
        timeout=timeout,
        rate_limit=_parse_rate_limit(name, data.get("rate_limit")),
    )


def load_config(config_path: Optional[Path]) -> AppConfig:
    """Load configuration from a YAML file.

    Without a path the defaults are used: adapter hci0 and a single stdout sink.
    """
    data: dict = {}
    base_dir = Path.cwd()
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"failed to parse '{config_path}': {e}") from e
        base_dir = config_path.parent

    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")

    try:
        transport = TransportType(data.get("transport", TransportType.BLUEZ.value))
    except ValueError:
        raise ConfigError(
            f"transport must be one of {[t.value for t in TransportType]}, given: {data.get('transport')!r}"
        ) from None

    sinks_data = data.get("sinks") or {}
    if not isinstance(sinks_data, dict):
        raise ConfigError("sinks must be a mapping of sink type to a list of sinks")

    sinks: list[SinkConfig] = []
    for i, sink_data in _sink_entries(sinks_data, "mqtt"):
        sinks.append(_parse_mqtt_sink(base_dir, i, sink_data))
    for i, sink_data in _sink_entries(sinks_data, "http"):
        sinks.append(_parse_http_sink(i, sink_data))
    for i, sink_data in _sink_entries(sinks_data, "stdout"):
        sinks.append(_parse_stdout_sink(i, sink_data))

    unknown = set(sinks_data) - {"mqtt", "http", "stdout"}
    if unknown:
        logger.warning("Ignoring unknown sink types: %s", ", ".join(sorted(unknown)))

    if not sinks:
        sinks.append(StdoutSinkConfig(name="default-sink"))

    for sink in sinks:
        logger.debug("Loaded sink: %s (%s)", sink.name, type(sink).__name__)

    config = AppConfig(
        adapter=str(data.get("adapter", DEFAULT_ADAPTER)),
        transport=transport,
        sinks=sinks,
    )
    logger.info("Loaded configuration with %d sinks", len(sinks))
    return config
