from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from queue import Queue
from typing import Callable
from uuid import UUID

try:
    from kafka import KafkaConsumer, KafkaProducer
except ImportError:  # pragma: no cover - optional dependency
    KafkaConsumer = None  # type: ignore
    KafkaProducer = None  # type: ignore

log = logging.getLogger(__name__)


class TaskKind(str, Enum):
    GENERATE = "generate"
    REGENERATE = "regenerate"


@dataclass(frozen=True)
class CompositionTask:
    composition_id: UUID
    kind: TaskKind = TaskKind.GENERATE

    def to_payload(self) -> dict[str, str | float]:
        return {"composition_id": str(self.composition_id), "kind": self.kind.value, "ts": time.time()}

    @classmethod
    def from_payload(cls, payload: dict) -> CompositionTask:
        return cls(
            composition_id=UUID(payload["composition_id"]),
            kind=TaskKind(payload.get("kind") or TaskKind.GENERATE.value),
        )


Processor = Callable[[CompositionTask], None]


class BaseQueue:
    def enqueue(self, task: CompositionTask) -> None: ...  # pragma: no cover

    def close(self) -> None:
        return None


class LocalQueue(BaseQueue):
    """In-process queue drained by daemon worker threads."""

    def __init__(self, processor: Processor, workers: int = 1) -> None:
        self._processor = processor
        self._queue: Queue[CompositionTask | None] = Queue()
        self._closed = False
        self._threads = [
            threading.Thread(target=self._run, name=f"composition-worker-{idx}", daemon=True)
            for idx in range(max(1, workers))
        ]
        for thread in self._threads:
            thread.start()

    def enqueue(self, task: CompositionTask) -> None:
        if self._closed:
            raise RuntimeError("composition queue is closed")
        self._queue.put(task)

    def join(self) -> None:
        self._queue.join()

    def close(self, timeout: float | None = 5.0) -> None:
        """Let workers finish queued tasks, then stop them."""
        if self._closed:
            return
        self._closed = True
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join(timeout)

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            if task is None:
                self._queue.task_done()
                return
            try:
                self._processor(task)
            except Exception:  # pragma: no cover - processor records failures itself
                log.exception("composition task crashed", extra={"composition_id": str(task.composition_id)})
            finally:
                self._queue.task_done()


class KafkaQueue(BaseQueue):
    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        processor: Processor,
    ) -> None:
        if KafkaProducer is None or KafkaConsumer is None:
            raise RuntimeError("kafka-python is not installed")
        self._topic = topic
        self._processor = processor
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            value_serializer=lambda value: json.dumps(value).encode("utf-8"),
        )
        self._consumer = KafkaConsumer(
            topic,
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
            auto_offset_reset="earliest",
            enable_auto_commit=True,
            value_deserializer=lambda value: json.loads(value.decode("utf-8")),
        )
        self._thread = threading.Thread(target=self._consume, daemon=True)
        self._thread.start()

    def enqueue(self, task: CompositionTask) -> None:
        self._producer.send(self._topic, task.to_payload())
        self._producer.flush()

    def _consume(self) -> None:
        for message in self._consumer:
            try:
                task = CompositionTask.from_payload(message.value)
            except (KeyError, ValueError):
                log.warning("dropping malformed composition task", extra={"payload": message.value})
                continue
            try:
                self._processor(task)
            except Exception:  # pragma: no cover - best effort logging
                log.exception("composition task crashed", extra={"composition_id": str(task.composition_id)})

    def close(self) -> None:
        self._producer.flush()
        self._producer.close()
        self._consumer.close()
