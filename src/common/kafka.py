"""Kafka helpers built around aiokafka."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

from aiokafka import AIOKafkaConsumer


class KafkaConsumer:
    """Kafka-консьюмер с JSON-десериализацией."""

    __slots__ = ("_consumer", "_started")

    def __init__(
        self,
        brokers: str,
        topic: str,
        group_id: str | None,
        *,
        auto_offset_reset: str = "latest",
    ) -> None:
        # Русский комментарий: инициализируем клиента с единым десериализатором.
        self._consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=brokers.split(","),
            group_id=group_id,
            auto_offset_reset=auto_offset_reset,
            value_deserializer=self._deserialize,
            key_deserializer=self._deserialize,
        )
        self._started = False

    @staticmethod
    def _deserialize(data: bytes | None) -> Any:
        if not data:
            return None
        try:
            return json.loads(data.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return data

    async def start(self) -> None:
        """Запускаем чтение из Kafka только при первом вызове."""

        if self._started:
            return
        await self._consumer.start()
        self._started = True

    async def stop(self) -> None:
        """Безопасно остановить консьюмера."""

        if not self._started:
            return
        await self._consumer.stop()
        self._started = False

    async def __aenter__(self) -> "KafkaConsumer":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def __aiter__(self) -> AsyncIterator[Any]:
        if not self._started:
            raise RuntimeError("KafkaConsumer must be started before iteration")
        return self._consume()

    async def _consume(self) -> AsyncIterator[Any]:
        # Русский комментарий: отдаём сырой объект сообщения aiokafka.
        async for msg in self._consumer:
            yield msg
