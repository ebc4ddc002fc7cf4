"""Durable key -> JSON document storage.

Every document is validated against its schema on the way in and on the way
out, written to a temporary file in the same directory and atomically renamed
over the previous version.  A failed save therefore never leaves a partially
written or invalid file behind.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from collections.abc import Callable, Mapping
from contextlib import suppress
from pathlib import Path
from typing import Any, Final, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from ..core.concurrency import run_blocking
from ..core.errors import PersistenceError
from .documents import (
    MAX_ARRAY_ELEMENTS,
    DecisionHistoryDocument,
    MetricsDocument,
    PatternRecordDocument,
    PolicyTableDocument,
)

__all__ = [
    "DECISION_HISTORY",
    "DEFAULT_SCHEMAS",
    "MAX_DOCUMENT_BYTES",
    "METRICS",
    "PATTERN_RECORD",
    "POLICY_TABLE",
    "DocumentStore",
]

logger = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES: Final = 10 * 1024 * 1024
_KEY_PATTERN: Final = re.compile(r"^[A-Za-z0-9_-]+$")

POLICY_TABLE: Final = "policyTable"
PATTERN_RECORD: Final = "patternRecord"
DECISION_HISTORY: Final = "decisionHistory"
METRICS: Final = "metrics"

DEFAULT_SCHEMAS: Final[Mapping[str, type[BaseModel]]] = {
    POLICY_TABLE: PolicyTableDocument,
    PATTERN_RECORD: PatternRecordDocument,
    DECISION_HISTORY: DecisionHistoryDocument,
    METRICS: MetricsDocument,
}

M = TypeVar("M", bound=BaseModel)


def _largest_collection(value: Any) -> int:
    """Size of the biggest list or object anywhere inside a decoded JSON value."""

    largest = 0
    stack = [value]
    while stack:
        current = stack.pop()
        if isinstance(current, dict):
            largest = max(largest, len(current))
            stack.extend(current.values())
        elif isinstance(current, list):
            largest = max(largest, len(current))
            stack.extend(current)
    return largest


class DocumentStore:
    """Schema-checked JSON documents under a single storage root."""

    def __init__(
        self,
        root: Path | str,
        *,
        schemas: Mapping[str, type[BaseModel]] | None = None,
        max_bytes: int = MAX_DOCUMENT_BYTES,
        max_elements: int = MAX_ARRAY_ELEMENTS,
    ) -> None:
        self._root = Path(root).resolve()
        self._schemas = dict(schemas or DEFAULT_SCHEMAS)
        self._max_bytes = max_bytes
        self._max_elements = max_elements
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------ helpers
    def path_for(self, name: str) -> Path:
        if not isinstance(name, str) or not _KEY_PATTERN.fullmatch(name):
            raise PersistenceError(f"invalid document key {name!r}")
        path = (self._root / f"{name}.json").resolve()
        if path.parent != self._root:
            raise PersistenceError(f"document key {name!r} escapes the storage root")
        return path

    def schema_for(self, name: str) -> type[BaseModel]:
        schema = self._schemas.get(name)
        if schema is None:
            # Per-opponent documents are named "<base>-<suffix>".
            base, sep, _ = name.partition("-")
            schema = self._schemas.get(base) if sep else None
        if schema is None:
            raise PersistenceError(f"no schema registered for document {name!r}")
        return schema

    def _validate(self, name: str, payload: Any) -> BaseModel:
        schema = self.schema_for(name)
        if isinstance(payload, BaseModel):
            # Re-validate: models are mutable and may have been edited after construction.
            payload = payload.model_dump(by_alias=True, mode="json")
        if _largest_collection(payload) > self._max_elements:
            raise PersistenceError(f"{name}: collection exceeds {self._max_elements} elements")
        try:
            return schema.model_validate(payload)
        except SchemaError as exc:
            raise PersistenceError(f"{name}: schema validation failed: {exc.error_count()} error(s)") from exc

    # ------------------------------------------------------------------ public API
    def save(self, name: str, document: BaseModel | Mapping[str, Any]) -> None:
        path = self.path_for(name)
        model = self._validate(name, document)
        data = json.dumps(model.model_dump(by_alias=True, mode="json"), separators=(",", ":")).encode("utf-8")
        if len(data) > self._max_bytes:
            raise PersistenceError(f"{name}: document is {len(data)} bytes, limit is {self._max_bytes}")

        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=self._root)
        except OSError as exc:
            raise PersistenceError(f"{name}: cannot create temporary file: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            with suppress(OSError):
                os.unlink(tmp_name)
            raise PersistenceError(f"{name}: write failed: {exc}") from exc
        logger.debug("saved document", extra={"document": name, "bytes": len(data)})

    def load(self, name: str, model: type[M] | None = None) -> M | None:
        """Return the stored document, ``None`` when absent; raise on corruption."""

        path = self.path_for(name)
        schema = model or self.schema_for(name)
        if schema is not self.schema_for(name):
            raise PersistenceError(f"{name}: schema mismatch ({schema.__name__})")
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceError(f"{name}: stat failed: {exc}") from exc
        if size > self._max_bytes:
            raise PersistenceError(f"{name}: stored document is {size} bytes, limit is {self._max_bytes}")
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"{name}: unreadable document: {exc}") from exc
        return self._validate(name, payload)  # type: ignore[return-value]

    def load_or_default(self, name: str, model: type[M], default: Callable[[], M] | None = None) -> M:
        """Like :meth:`load`, but absent or corrupt documents yield a default."""

        factory = default or model
        try:
            loaded = self.load(name, model)
        except PersistenceError as exc:
            logger.warning("falling back to default document", extra={"document": name, "error": str(exc)})
            return factory()
        return loaded if loaded is not None else factory()

    def delete(self, name: str) -> bool:
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PersistenceError(f"{name}: delete failed: {exc}") from exc
        return True

    async def save_async(self, name: str, document: BaseModel | Mapping[str, Any]) -> None:
        await run_blocking(self.save, name, document)

    async def load_async(self, name: str, model: type[M] | None = None) -> M | None:
        return await run_blocking(self.load, name, model)

    async def load_or_default_async(self, name: str, model: type[M], default: Callable[[], M] | None = None) -> M:
        return await run_blocking(self.load_or_default, name, model, default)

