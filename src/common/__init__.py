"""Common utilities for the ride session services."""

__all__ = [
    "settings",
    "setup_otel",
    "setup_logging",
    "get_logger",
    "KafkaConsumer",
]
