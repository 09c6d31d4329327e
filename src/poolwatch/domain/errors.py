# poolwatch/domain/errors.py
from __future__ import annotations


class PoolwatchError(Exception):
    """Base class for every error raised by poolwatch."""


class ConfigError(PoolwatchError):
    """Missing or invalid process configuration (fatal at startup)."""


class MetadataError(PoolwatchError):
    """On-chain metadata lookup failed (fatal at startup)."""


class TransportError(PoolwatchError):
    """The event source connection failed or dropped."""


class DecodeError(PoolwatchError):
    """A single log could not be decoded as a Swap event."""


class SinkError(PoolwatchError):
    """A whole batch could not be committed to the sink."""


class PipelineClosed(PoolwatchError):
    """The consumer side of the ingestion pipeline is gone."""
