from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.client.models import CachedWorkflow, CacheState, MutationKind, PendingMutation

logger = logging.getLogger(__name__)


class WorkflowCache:
    """JSON file mirror of workflow records plus the offline mutation queue.

    Every save replaces the file atomically; concurrent writers resolve as
    last-write-wins. ``clock`` is a Lamport counter that orders queued mutations.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._state = self._load()

    def _load(self) -> CacheState:
        if not self.path.exists():
            return CacheState()
        try:
            return CacheState.model_validate_json(self.path.read_bytes())
        except ValidationError:
            backup = self.path.with_suffix(self.path.suffix + ".corrupt")
            os.replace(self.path, backup)
            logger.warning("Workflow cache was unreadable; moved it to %s", backup)
            return CacheState()

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(self._state.model_dump_json(indent=2))
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def reload(self) -> None:
        """Adopt the on-disk state, keeping the clock monotonic."""
        local_clock = self._state.clock
        self._state = self._load()
        self._state.clock = max(self._state.clock, local_clock)

    # Records

    def get(self, loan_id: str) -> CachedWorkflow | None:
        return self._state.records.get(loan_id)

    def put(self, record: CachedWorkflow) -> None:
        self._state.records[record.loan_id] = record

    def remove(self, loan_id: str) -> None:
        self._state.records.pop(loan_id, None)
        if self._state.current_loan_id == loan_id:
            self._state.current_loan_id = None

    def records(self) -> list[CachedWorkflow]:
        return list(self._state.records.values())

    @property
    def current_loan_id(self) -> str | None:
        return self._state.current_loan_id

    @current_loan_id.setter
    def current_loan_id(self, loan_id: str | None) -> None:
        self._state.current_loan_id = loan_id

    # Queue

    @property
    def clock(self) -> int:
        return self._state.clock

    def tick(self) -> int:
        self._state.clock += 1
        return self._state.clock

    def enqueue(self, kind: MutationKind, loan_id: str, payload: dict[str, Any]) -> PendingMutation:
        mutation = PendingMutation(seq=self.tick(), kind=kind, loan_id=loan_id, payload=payload)
        self._state.pending.append(mutation)
        return mutation

    def pending(self, loan_id: str | None = None) -> list[PendingMutation]:
        items = sorted(self._state.pending, key=lambda mutation: mutation.seq)
        if loan_id is not None:
            items = [mutation for mutation in items if mutation.loan_id == loan_id]
        return items

    def dequeue(self, seq: int) -> None:
        self._state.pending = [mutation for mutation in self._state.pending if mutation.seq != seq]

    def remap_loan_id(self, old_id: str, new_id: str) -> None:
        """Point the record, queued mutations and current selection at ``new_id``."""
        record = self._state.records.pop(old_id, None)
        if record is not None:
            record.loan_id = new_id
            self._state.records[new_id] = record
        for mutation in self._state.pending:
            if mutation.loan_id == old_id:
                mutation.loan_id = new_id
        if self._state.current_loan_id == old_id:
            self._state.current_loan_id = new_id
