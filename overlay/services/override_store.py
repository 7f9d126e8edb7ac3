"""Singleton override document storage.

Two implementations share the ``OverrideStore`` protocol:

* ``SqlOverrideStore``: SQLAlchemy Core over any DSN (SQLite by default).
  The override tree is stored JSON-as-TEXT and re-serialized whole on every
  write, so there is no nested-mutation tracking to forget.
* ``MemoryOverrideStore``: process-local, for tests and single-process dev.

The SQL table carries a unique constraint on the document id and a lost
first-insert race re-reads the winner's row. Tables created before the
constraint may still hold duplicates, so reads always pick the most recently
updated document (insertion order breaks ties) and ``prune_stale`` removes the
out-voted ones on request.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    runtime_checkable,
)

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from overlay.errors import StorageUnavailable
from overlay.services.paths import set_path, unset_path

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine

log = logging.getLogger(__name__)

DOCUMENT_ID = "admin-config"
SCHEMA_VERSION = 1

Clock = Callable[[], datetime]
# Given the post-change tree and the keys just changed, return extra paths to set.
DeriveFn = Callable[[Mapping[str, Any], List[str]], Mapping[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OverrideDocument:
    id: str = DOCUMENT_ID
    version: int = SCHEMA_VERSION
    # Bumped on every accepted write; cache entries are stamped with it.
    generation: int = 0
    overrides: Dict[str, Any] = field(default_factory=dict)
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "generation": self.generation,
            "overrides": copy.deepcopy(self.overrides),
            "updatedBy": self.updated_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OverrideDocument":
        def _dt(raw: Any) -> Optional[datetime]:
            return datetime.fromisoformat(raw) if isinstance(raw, str) and raw else None

        return cls(
            id=str(data.get("id") or DOCUMENT_ID),
            version=int(data.get("version") or SCHEMA_VERSION),
            generation=int(data.get("generation") or 0),
            overrides=dict(data.get("overrides") or {}),
            updated_by=data.get("updatedBy"),
            created_at=_dt(data.get("createdAt")),
            updated_at=_dt(data.get("updatedAt")),
        )


def apply_changes(
    tree: Mapping[str, Any],
    changes: Mapping[str, Any],
    derive: Optional[DeriveFn] = None,
) -> Dict[str, Any]:
    """Return a new tree with ``changes`` (and any derived paths) applied.

    A ``None`` value removes the path. The input tree is never mutated.
    """
    out = copy.deepcopy(dict(tree))
    for path, value in changes.items():
        if value is None:
            unset_path(out, path)
        else:
            set_path(out, path, copy.deepcopy(value))
    if derive is not None:
        for path, value in derive(out, list(changes)).items():
            if value is None:
                unset_path(out, path)
            else:
                set_path(out, path, value)
    return out


@runtime_checkable
class OverrideStore(Protocol):
    def get_document(self) -> OverrideDocument:
        """Most recently updated document; created empty on first access."""
        ...

    def update(
        self,
        changes: Mapping[str, Any],
        user_id: Optional[str] = None,
        derive: Optional[DeriveFn] = None,
    ) -> OverrideDocument:
        """Read-modify-write ``changes`` (plus derived paths) as one update."""
        ...

    def set_path(self, key: str, value: Any, user_id: Optional[str] = None) -> OverrideDocument:
        ...

    def reset_all(self, user_id: Optional[str] = None) -> OverrideDocument:
        """Clear ``overrides`` to ``{}``; the document and its version survive."""
        ...

    def prune_stale(self) -> int:
        """Delete out-voted duplicate documents. Returns the number removed."""
        ...


class MemoryOverrideStore(OverrideStore):
    """Simple in-memory store; NOT suitable for multi-process deployments."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock
        self._docs: List[OverrideDocument] = []
        self._mu = threading.RLock()

    def _newest_locked(self) -> Optional[OverrideDocument]:
        best: Optional[OverrideDocument] = None
        for doc in self._docs:
            if doc.id != DOCUMENT_ID:
                continue
            if best is None or (doc.updated_at or datetime.min.replace(tzinfo=timezone.utc)) >= (
                best.updated_at or datetime.min.replace(tzinfo=timezone.utc)
            ):
                best = doc
        return best

    def _ensure_locked(self) -> OverrideDocument:
        doc = self._newest_locked()
        if doc is None:
            now = self._clock()
            doc = OverrideDocument(created_at=now, updated_at=now)
            self._docs.append(doc)
        return doc

    def add_document(self, doc: OverrideDocument) -> None:
        """Insert a raw document, bypassing upsert (duplicate/migration fixtures)."""
        with self._mu:
            self._docs.append(copy.deepcopy(doc))

    def get_document(self) -> OverrideDocument:
        with self._mu:
            return copy.deepcopy(self._ensure_locked())

    def update(
        self,
        changes: Mapping[str, Any],
        user_id: Optional[str] = None,
        derive: Optional[DeriveFn] = None,
    ) -> OverrideDocument:
        with self._mu:
            doc = self._ensure_locked()
            new_tree = apply_changes(doc.overrides, changes, derive)
            doc.overrides = new_tree
            doc.generation += 1
            doc.updated_by = user_id
            doc.updated_at = self._clock()
            return copy.deepcopy(doc)

    def set_path(self, key: str, value: Any, user_id: Optional[str] = None) -> OverrideDocument:
        return self.update({key: value}, user_id)

    def reset_all(self, user_id: Optional[str] = None) -> OverrideDocument:
        with self._mu:
            doc = self._ensure_locked()
            doc.overrides = {}
            doc.generation += 1
            doc.updated_by = user_id
            doc.updated_at = self._clock()
            return copy.deepcopy(doc)

    def prune_stale(self) -> int:
        with self._mu:
            keep = self._newest_locked()
            before = len(self._docs)
            self._docs = [d for d in self._docs if d is keep or d.id != DOCUMENT_ID]
            return before - len(self._docs)


# -----------------------------------------------------------------------------
# SQL backend
# -----------------------------------------------------------------------------

_meta = MetaData()

# Tables created before uq_admin_config_doc_id keep working; their duplicates
# are out-voted by updated_at on read.
admin_config = Table(
    "admin_config",
    _meta,
    Column("pk", Integer, primary_key=True, autoincrement=True),
    Column("doc_id", String(64), nullable=False, index=True),
    Column("version", Integer, nullable=False, default=SCHEMA_VERSION),
    Column("generation", Integer, nullable=False, default=0),
    Column("overrides", Text, nullable=False),  # JSON-encoded
    Column("updated_by", String(128), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False, index=True),
    UniqueConstraint("doc_id", name="uq_admin_config_doc_id"),
)


def _connect_args(dsn: str, timeout_s: float) -> Dict[str, Any]:
    backend = make_url(dsn).get_backend_name()
    if backend == "sqlite":
        return {"timeout": timeout_s}
    if backend in ("postgresql", "mysql", "mariadb"):
        return {"connect_timeout": max(1, int(timeout_s))}
    return {}


def create_store_engine(dsn: str, connect_timeout_s: float = 10.0) -> "Engine":
    """Create the engine with a bounded connect timeout and the schema in place."""
    if dsn.startswith("sqlite:///"):
        path = dsn.replace("sqlite:///", "", 1)
        dir_ = os.path.dirname(path or ".")
        if dir_:
            os.makedirs(dir_, exist_ok=True)
    eng = create_engine(
        dsn,
        future=True,
        pool_pre_ping=True,
        connect_args=_connect_args(dsn, connect_timeout_s),
    )
    try:
        _meta.create_all(eng)
    except SQLAlchemyError as exc:
        raise StorageUnavailable(f"override storage unavailable: {exc}") from exc
    return eng


def _to_doc(row: Any) -> OverrideDocument:
    try:
        overrides = json.loads(row.overrides) if row.overrides else {}
    except ValueError:
        log.warning("override document %s has unreadable overrides; treating as empty", row.pk)
        overrides = {}
    if not isinstance(overrides, dict):
        overrides = {}
    return OverrideDocument(
        id=row.doc_id,
        version=int(row.version),
        generation=int(row.generation),
        overrides=overrides,
        updated_by=row.updated_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlOverrideStore(OverrideStore):
    def __init__(self, engine: "Engine", clock: Clock = _utcnow) -> None:
        self.engine = engine
        self._clock = clock

    @classmethod
    def from_dsn(cls, dsn: str, connect_timeout_s: float = 10.0) -> "SqlOverrideStore":
        return cls(create_store_engine(dsn, connect_timeout_s))

    def _newest(self, cx: "Connection") -> Any:
        stmt = (
            select(admin_config)
            .where(admin_config.c.doc_id == DOCUMENT_ID)
            .order_by(admin_config.c.updated_at.desc(), admin_config.c.pk.desc())
            .limit(1)
        )
        return cx.execute(stmt).first()

    def _create_if_missing(self) -> None:
        """Insert the empty document unless one exists; losing the race is fine."""
        try:
            with self.engine.begin() as cx:
                if self._newest(cx) is not None:
                    return
                now = self._clock()
                cx.execute(
                    insert(admin_config).values(
                        doc_id=DOCUMENT_ID,
                        version=SCHEMA_VERSION,
                        generation=0,
                        overrides="{}",
                        updated_by=None,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError:
            log.info("override document created by a concurrent writer; re-reading")

    def _ensure(self, cx: "Connection") -> Any:
        row = self._newest(cx)
        if row is None:
            raise StorageUnavailable("override document missing after create")
        return row

    def get_document(self) -> OverrideDocument:
        try:
            self._create_if_missing()
            with self.engine.begin() as cx:
                return _to_doc(self._ensure(cx))
        except SQLAlchemyError as exc:
            log.error("override storage read failed: %s", exc)
            raise StorageUnavailable(f"override storage unavailable: {exc}") from exc

    def _write(
        self,
        mutate: Callable[[OverrideDocument], Dict[str, Any]],
        user_id: Optional[str],
    ) -> OverrideDocument:
        try:
            self._create_if_missing()
            with self.engine.begin() as cx:
                row = self._ensure(cx)
                row_pk = row.pk
                current = _to_doc(row)
                new_tree = mutate(current)
                now = self._clock()
                cx.execute(
                    update(admin_config)
                    .where(admin_config.c.pk == row_pk)
                    .values(
                        overrides=json.dumps(new_tree, ensure_ascii=False, separators=(",", ":")),
                        generation=current.generation + 1,
                        updated_by=user_id,
                        updated_at=now,
                    )
                )
                row = cx.execute(select(admin_config).where(admin_config.c.pk == row_pk)).first()
                return _to_doc(row)
        except SQLAlchemyError as exc:
            log.error("override storage write failed: %s", exc)
            raise StorageUnavailable(f"override storage unavailable: {exc}") from exc

    def update(
        self,
        changes: Mapping[str, Any],
        user_id: Optional[str] = None,
        derive: Optional[DeriveFn] = None,
    ) -> OverrideDocument:
        return self._write(lambda doc: apply_changes(doc.overrides, changes, derive), user_id)

    def set_path(self, key: str, value: Any, user_id: Optional[str] = None) -> OverrideDocument:
        return self.update({key: value}, user_id)

    def reset_all(self, user_id: Optional[str] = None) -> OverrideDocument:
        return self._write(lambda _doc: {}, user_id)

    def prune_stale(self) -> int:
        try:
            with self.engine.begin() as cx:
                keep = self._newest(cx)
                if keep is None:
                    return 0
                result = cx.execute(
                    delete(admin_config).where(
                        admin_config.c.doc_id == DOCUMENT_ID,
                        admin_config.c.pk != keep.pk,
                    )
                )
                removed = int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"override storage unavailable: {exc}") from exc
        if removed:
            log.info("pruned stale override documents", extra={"removed": removed})
        return removed


__all__ = [
    "DOCUMENT_ID",
    "SCHEMA_VERSION",
    "OverrideDocument",
    "OverrideStore",
    "MemoryOverrideStore",
    "SqlOverrideStore",
    "admin_config",
    "apply_changes",
    "create_store_engine",
]
