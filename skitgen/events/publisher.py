from __future__ import annotations

import json
import logging
from threading import Lock
from typing import Any, Dict, Tuple
from uuid import UUID

try:  # pragma: no cover - optional dependency
    from kafka import KafkaProducer
except ImportError:  # pragma: no cover - fallback when kafka-python absent
    KafkaProducer = None  # type: ignore

from skitgen.models.domain import Composition


class CompositionEventPublisher:
    """Emits a ``composition.updated`` event whenever status or progress moves.

    Events are keyed by composition id so a partitioned topic keeps each
    composition's updates in order.
    """

    def __init__(self, bootstrap_servers: str, topic: str, logger: logging.Logger | None = None) -> None:
        if KafkaProducer is None:
            raise RuntimeError("kafka-python is not installed")
        if not bootstrap_servers or not topic:
            raise ValueError("bootstrap_servers and topic are required")
        self._topic = topic
        self._log = logger or logging.getLogger(__name__)
        self._last_seen: Dict[UUID, Tuple[str, int]] = {}
        self._lock = Lock()
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            key_serializer=lambda key: key.encode("utf-8"),
            value_serializer=lambda payload: json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            linger_ms=5,
        )

    def publish(self, composition: Composition) -> bool:
        marker = (composition.status.value, composition.progress)
        with self._lock:
            if self._last_seen.get(composition.id) == marker:
                return False
            self._last_seen[composition.id] = marker
            if composition.status.terminal:
                self._last_seen.pop(composition.id, None)
        payload: dict[str, Any] = {
            "event": "composition.updated",
            "composition_id": str(composition.id),
            "status": composition.status.value,
            "progress": composition.progress,
            "composition": composition.model_dump(mode="json"),
        }
        try:
            self._producer.send(self._topic, key=str(composition.id), value=payload)
        except Exception:
            self._log.warning(
                "composition event not sent",
                extra={"composition_id": str(composition.id), "topic": self._topic},
                exc_info=True,
            )
            return False
        return True

    def close(self) -> None:
        try:
            self._producer.flush()
            self._producer.close()
        except Exception:
            self._log.debug("composition event publisher close failed", exc_info=True)
