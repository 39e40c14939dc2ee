from __future__ import annotations

import csv
import json
import threading

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Hashable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from faceid.errors import ParseError
from faceid.utils.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class RegisteredEntry:
    identity: Hashable
    embedding: np.ndarray

    @property
    def dim(self) -> int:
        return int(self.embedding.shape[0])


def as_embedding(values) -> np.ndarray:
    """Copy `values` into a read-only 1D float32 vector."""
    vec = np.array(values, dtype=np.float32).reshape(-1)
    vec.setflags(write=False)
    return vec


class EmbeddingStore:
    """In-memory gallery of (identity, embedding) templates.

    The same identity may appear any number of times (one entry per reference
    photo); every entry takes part in matching. Entries are not checked against
    each other's length here: the matcher skips incompatible ones.

    Readers get an immutable tuple snapshot. `load`/`add` build a new tuple and
    swap it in under a lock, so concurrent `all()` callers see either the old or
    the new set, never a partial one.
    """

    def __init__(self, entries: Optional[Iterable[RegisteredEntry]] = None):
        self._lock = threading.Lock()
        self._entries: Tuple[RegisteredEntry, ...] = ()
        self._version = 0
        if entries is not None:
            self.load(entries)

    @property
    def version(self) -> int:
        """Incremented on every mutation."""
        return self._version

    def load(self, entries: Iterable[RegisteredEntry]) -> None:
        """Replace the whole set, keeping the given order."""
        snapshot = tuple(self._coerce(e) for e in entries)
        with self._lock:
            self._entries = snapshot
            self._version += 1
        logger.info(f"Loaded {len(snapshot)} registered embeddings")

    def add(self, identity: Hashable, embedding) -> RegisteredEntry:
        entry = RegisteredEntry(identity=identity, embedding=as_embedding(embedding))
        with self._lock:
            self._entries = self._entries + (entry,)
            self._version += 1
        return entry

    def all(self) -> Tuple[RegisteredEntry, ...]:
        return self._entries

    def snapshot(self) -> Tuple[int, Tuple[RegisteredEntry, ...]]:
        """(version, entries) read together."""
        with self._lock:
            return self._version, self._entries

    def identities(self) -> List[Hashable]:
        """Distinct identities in first-seen order."""
        seen: Dict[Hashable, None] = {}
        for e in self._entries:
            seen.setdefault(e.identity, None)
        return list(seen)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RegisteredEntry]:
        return iter(self._entries)

    @staticmethod
    def _coerce(entry) -> RegisteredEntry:
        if isinstance(entry, RegisteredEntry):
            emb = entry.embedding
            if isinstance(emb, np.ndarray) and emb.dtype == np.float32 and emb.ndim == 1 and not emb.flags.writeable:
                return entry
            return RegisteredEntry(identity=entry.identity, embedding=as_embedding(emb))
        identity, embedding = entry
        return RegisteredEntry(identity=identity, embedding=as_embedding(embedding))


def parse_embedding(text: str) -> np.ndarray:
    """Parse comma-separated floating-point text into an embedding vector.

    Raises:
        ParseError: empty text, a non-numeric field or a non-finite value.
    """
    if not isinstance(text, str):
        raise ParseError(f"Expected text, got {type(text).__name__}")
    fields = [f.strip() for f in text.strip().strip("[]").split(",")]
    if not fields or fields == [""]:
        raise ParseError("Embedding text is empty")
    try:
        values = [float(f) for f in fields]
    except ValueError as e:
        raise ParseError(f"Malformed embedding text: {e}") from e
    vec = as_embedding(values)
    if not np.all(np.isfinite(vec)):
        raise ParseError("Embedding contains non-finite values")
    return vec


def _record_fields(record: Any) -> Tuple[Hashable, Any]:
    if isinstance(record, dict):
        if "identity" not in record or "embedding" not in record:
            raise ParseError(f"Record needs 'identity' and 'embedding' keys, got {sorted(record)}")
        return record["identity"], record["embedding"]
    try:
        identity, embedding = record
    except (TypeError, ValueError) as e:
        raise ParseError(f"Record is not an (identity, embedding) pair: {record!r}") from e
    return identity, embedding


def parse_record(record: Any, expected_dim: Optional[int] = None) -> RegisteredEntry:
    """Turn one persistence record into a `RegisteredEntry`.

    Embeddings may be comma-separated text or a numeric sequence.
    """
    identity, raw = _record_fields(record)
    if identity is None:
        raise ParseError("Record has no identity")
    if isinstance(raw, str):
        vec = parse_embedding(raw)
    else:
        try:
            vec = as_embedding(raw)
        except (TypeError, ValueError) as e:
            raise ParseError(f"Malformed embedding for {identity!r}: {e}") from e
        if vec.size == 0 or not np.all(np.isfinite(vec)):
            raise ParseError(f"Embedding for {identity!r} is empty or non-finite")
    if expected_dim is not None and vec.shape[0] != int(expected_dim):
        raise ParseError(f"Embedding for {identity!r} has {vec.shape[0]} values, expected {int(expected_dim)}")
    return RegisteredEntry(identity=identity, embedding=vec)


def entries_from_records(records: Iterable[Any], expected_dim: Optional[int] = None) -> List[RegisteredEntry]:
    """Parse persistence records, skipping (and logging) only the malformed ones."""
    out: List[RegisteredEntry] = []
    skipped = 0
    for i, record in enumerate(records):
        try:
            out.append(parse_record(record, expected_dim=expected_dim))
        except ParseError as e:
            skipped += 1
            logger.warning(f"Skipping registered embedding record #{i}: {e}")
    if skipped:
        logger.warning(f"Skipped {skipped} malformed records, kept {len(out)}")
    return out


def read_records(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Read raw `{identity, embedding}` records from a JSON or CSV file.

    JSON: a list of objects, or an object mapping identity -> embedding (or a
    list of embeddings for multi-template identities).
    CSV: header with `identity` and `embedding` columns; the embedding column
    holds the comma-separated vector, quoted.
    """
    fp = Path(path)
    if fp.suffix.lower() == ".csv":
        with open(fp, "r", encoding="utf-8", newline="") as f:
            return [dict(row) for row in csv.DictReader(f)]

    with open(fp, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        records: List[Dict[str, Any]] = []
        for identity, value in data.items():
            templates: Sequence[Any]
            if isinstance(value, list) and value and isinstance(value[0], (list, str)):
                templates = value
            else:
                templates = [value]
            for emb in templates:
                records.append({"identity": identity, "embedding": emb})
        return records
    raise ParseError(f"Unsupported gallery layout in {fp}: {type(data).__name__}")
