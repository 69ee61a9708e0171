"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings
from pydantic._internal._model_construction import ModelMetaclass


class SettingsMeta(ModelMetaclass):
    """Metaclass to allow overriding fields without type annotations."""

    def __new__(mcls, name, bases, namespace, **kwargs):  # type: ignore[override]
        annotations = dict(namespace.get("__annotations__", {}))
        for base in bases:
            for klass in base.__mro__:
                for field, ann in klass.__dict__.get("__annotations__", {}).items():
                    if field in namespace and field not in annotations:
                        annotations[field] = ann
        namespace["__annotations__"] = annotations
        return super().__new__(mcls, name, bases, namespace, **kwargs)


class Settings(BaseSettings, metaclass=SettingsMeta):
    """Base settings shared by every service."""

    # Defaults keep modules importable in tests without an environment.
    # Deployments override them through environment variables.
    kafka_brokers: str | None = Field(default=None, alias="KAFKA_BROKERS")
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "case_sensitive": False,
        "populate_by_name": True,
    }


settings = Settings()
"""Singleton instance of :class:`Settings`."""
