from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, Generic, Iterable, List, TypeVar
from uuid import UUID

from pydantic import BaseModel

from skitgen.errors import NotFoundError, ValidationError
from skitgen.models.domain import Character, Composition, Template

RecordT = TypeVar("RecordT", bound=BaseModel)


class _InMemoryRepository(Generic[RecordT]):
    label = "Record"

    def __init__(self) -> None:
        self._records: Dict[UUID, RecordT] = {}
        self._lock = Lock()

    def save(self, record: RecordT) -> RecordT:
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)
        return record

    def get(self, record_id: UUID) -> RecordT | None:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    def list(self) -> List[RecordT]:
        with self._lock:
            return [record.model_copy(deep=True) for record in self._records.values()]

    def update(self, record_id: UUID, **fields: Any) -> RecordT:
        """Merge ``fields`` into the stored record; last writer wins."""
        return self.modify(record_id, lambda current: fields)

    def modify(self, record_id: UUID, mutate: Callable[[RecordT], Dict[str, Any]]) -> RecordT:
        """Run ``mutate`` on a copy of the record and merge the fields it returns.

        The read, ``mutate`` and the write happen under one lock, so ``mutate``
        may reject the change by raising and no other writer can interleave.
        """
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise NotFoundError(f"{self.label} not found: {record_id}")
            fields = mutate(current.model_copy(deep=True))
            payload = current.model_dump()
            payload.update(fields)
            updated = self._validate(payload)
            self._records[record_id] = updated
            return updated.model_copy(deep=True)

    def _validate(self, payload: Dict[str, Any]) -> RecordT:
        raise NotImplementedError


class CompositionRepository(_InMemoryRepository[Composition]):
    label = "Composition"

    def create(self, composition: Composition) -> Composition:
        return self.save(composition)

    def recent(self, limit: int = 50) -> List[Composition]:
        items = self.list()
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items[: max(0, limit)]

    def _validate(self, payload: Dict[str, Any]) -> Composition:
        payload["updated_at"] = datetime.utcnow()
        return Composition.model_validate(payload)


class CharacterRepository(_InMemoryRepository[Character]):
    label = "Character"

    def create(self, character: Character) -> Character:
        name = character.name.strip().lower()
        with self._lock:
            if any(existing.name == name for existing in self._records.values()):
                raise ValidationError(f"Character name already exists: {name}")
            self._records[character.id] = character.model_copy(update={"name": name}, deep=True)
            return self._records[character.id].model_copy(deep=True)

    def get_many(self, character_ids: Iterable[UUID]) -> List[Character]:
        found: List[Character] = []
        for character_id in character_ids:
            character = self.get(character_id)
            if character is not None:
                found.append(character)
        return found

    def _validate(self, payload: Dict[str, Any]) -> Character:
        return Character.model_validate(payload)


class TemplateRepository(_InMemoryRepository[Template]):
    label = "Template"

    def create(self, template: Template) -> Template:
        return self.save(template)

    def _validate(self, payload: Dict[str, Any]) -> Template:
        return Template.model_validate(payload)
