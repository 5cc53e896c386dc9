"""Measurement sinks."""

from __future__ import annotations

from ..models import HttpSinkConfig, MqttSinkConfig, SinkConfig, StdoutSinkConfig
from .base import Sink, SinkPublishError
from .ratelimiter import RateLimiter


def create_sink(config: SinkConfig) -> Sink:
    """Create the sink for a sink configuration."""
    if isinstance(config, StdoutSinkConfig):
        from .stdout import StdoutSink

        return StdoutSink(config.name, config.rate_limit)
    if isinstance(config, MqttSinkConfig):
        from .mqtt import MqttSink

        return MqttSink(config)
    if isinstance(config, HttpSinkConfig):
        from .http import HttpSink

        return HttpSink(config)
    raise TypeError(f"unknown sink config type: {type(config).__name__}")


__all__ = ["RateLimiter", "Sink", "SinkPublishError", "create_sink"]
