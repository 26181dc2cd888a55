"""Connection adapter for the audit backends.

Two engines are supported: an embedded SQLite file and a client-server
PostgreSQL database. They disagree on placeholder syntax (``?`` versus
``$1``) and on which identifiers need quoting (``user`` is reserved in
PostgreSQL and mixed-case names fold to lower case there). Statements are
written once as a template with ``{name}`` identifier slots and ``%s``
value slots; the dialect of the descriptor's backend renders them.
"""

from __future__ import annotations

from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import structlog
from db_utils import SQLAlchemyConnectionWrapper
from schemas import BackendKind, ClientServerDescriptor, EmbeddedDescriptor
from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

logger = structlog.get_logger("steward.storage")

Descriptor = Union[EmbeddedDescriptor, ClientServerDescriptor]


class BackendConnectionError(Exception):
    """Raised when the audit backend is unreachable or misconfigured."""


class Dialect:
    kind: BackendKind
    reserved_words: frozenset = frozenset()

    def placeholder(self, position: int) -> str:
        raise NotImplementedError

    def needs_quoting(self, identifier: str) -> bool:
        return identifier.lower() in self.reserved_words

    def quote(self, identifier: str) -> str:
        if self.needs_quoting(identifier):
            return '"' + identifier.replace('"', '""') + '"'
        return identifier

    def render(self, template: str, identifiers: Iterable[str] = ()) -> str:
        """Fill ``{name}`` slots with quoted identifiers and ``%s`` slots with placeholders."""
        quoted = {name: self.quote(name) for name in identifiers}
        sql = template.format(**quoted)
        parts = sql.split("%s")
        rendered = parts[0]
        for position, part in enumerate(parts[1:], start=1):
            rendered += self.placeholder(position) + part
        return rendered


class SqliteDialect(Dialect):
    kind = BackendKind.EMBEDDED
    reserved_words = frozenset(
        {"order", "group", "select", "table", "where", "index", "transaction"}
    )

    def placeholder(self, position: int) -> str:
        return "?"


class PostgresDialect(Dialect):
    kind = BackendKind.CLIENT_SERVER
    reserved_words = frozenset(
        {"user", "order", "group", "select", "table", "where", "authorization"}
    )

    def placeholder(self, position: int) -> str:
        return f"${position}"

    def needs_quoting(self, identifier: str) -> bool:
        # Unquoted identifiers fold to lower case.
        return super().needs_quoting(identifier) or identifier != identifier.lower()


class AuditConnection:
    """Uniform query/execute surface over one backend connection."""

    def __init__(self, wrapper: SQLAlchemyConnectionWrapper, dialect: Dialect):
        self._wrapper = wrapper
        self.dialect = dialect
        self._closed = False

    @property
    def kind(self) -> BackendKind:
        return self.dialect.kind

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        try:
            rows = self._wrapper.execute(sql, list(params)).fetchall()
        except SQLAlchemyError as exc:
            raise BackendConnectionError(f"Query failed: {exc}") from exc
        return [dict(row) for row in rows]

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        try:
            result = self._wrapper.execute(sql, list(params))
            self._wrapper.commit()
        except SQLAlchemyError as exc:
            self._wrapper.rollback()
            raise BackendConnectionError(f"Statement failed: {exc}") from exc
        return result.rowcount

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._wrapper.close()

    def __enter__(self) -> "AuditConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class BackendAdapter:
    dialect: Dialect

    def connect(self, descriptor: Descriptor) -> AuditConnection:
        engine = self.engine_for(descriptor)
        try:
            raw = engine.connect()
        except SQLAlchemyError as exc:
            raise BackendConnectionError(
                f"Unable to connect to {descriptor.type} backend: {exc}"
            ) from exc
        return AuditConnection(SQLAlchemyConnectionWrapper(raw), self.dialect)

    def engine_for(self, descriptor: Descriptor) -> Engine:
        raise NotImplementedError

    def dispose(self) -> None:
        return None


class EmbeddedAdapter(BackendAdapter):
    """Short-lived SQLite connections: a fresh unpooled engine per open."""

    dialect = SqliteDialect()

    def engine_for(self, descriptor: Descriptor) -> Engine:
        if not isinstance(descriptor, EmbeddedDescriptor):
            raise BackendConnectionError("Embedded adapter requires an embedded descriptor")
        return create_engine(f"sqlite:///{descriptor.path}", poolclass=NullPool)


class ClientServerAdapter(BackendAdapter):
    """Pooled PostgreSQL connections shared across calls, one pool per descriptor."""

    dialect = PostgresDialect()

    def __init__(self, engine_factory: Optional[Callable[[Descriptor], Engine]] = None):
        self._engine_factory = engine_factory or self._create_engine
        self._engines: Dict[str, Engine] = {}
        self._lock = Lock()

    @staticmethod
    def _create_engine(descriptor: Descriptor) -> Engine:
        url = URL.create(
            "postgresql+psycopg2",
            username=descriptor.user,
            password=descriptor.password or None,
            host=descriptor.host,
            port=descriptor.port,
            database=descriptor.database,
        )
        connect_args: Dict[str, Any] = {}
        if descriptor.ssl:
            connect_args["sslmode"] = "require"
        if descriptor.db_schema:
            connect_args["options"] = f"-csearch_path={descriptor.db_schema}"
        return create_engine(
            url,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    def engine_for(self, descriptor: Descriptor) -> Engine:
        if not isinstance(descriptor, ClientServerDescriptor):
            raise BackendConnectionError(
                "Client-server adapter requires a client-server descriptor"
            )
        key = descriptor.cache_key()
        with self._lock:
            engine = self._engines.get(key)
            if engine is None:
                try:
                    engine = self._engine_factory(descriptor)
                except (SQLAlchemyError, ImportError) as exc:
                    raise BackendConnectionError(
                        f"Unable to create connection pool: {exc}"
                    ) from exc
                self._engines[key] = engine
                logger.info("storage.pool_created", backend=descriptor.type, host=descriptor.host)
            return engine

    def dispose(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.dispose()


class ConnectionManager:
    """Selects the adapter for a descriptor's backend kind and opens connections."""

    def __init__(self, adapters: Optional[Dict[BackendKind, BackendAdapter]] = None):
        self.adapters: Dict[BackendKind, BackendAdapter] = adapters or {
            BackendKind.EMBEDDED: EmbeddedAdapter(),
            BackendKind.CLIENT_SERVER: ClientServerAdapter(),
        }

    def adapter_for(self, descriptor: Optional[Descriptor]) -> BackendAdapter:
        if descriptor is None:
            raise BackendConnectionError("Database configuration not found")
        adapter = self.adapters.get(getattr(descriptor, "kind", None))
        if adapter is None:
            raise BackendConnectionError(f"Unsupported backend: {descriptor!r}")
        return adapter

    def dialect_for(self, descriptor: Descriptor) -> Dialect:
        return self.adapter_for(descriptor).dialect

    def open(self, descriptor: Optional[Descriptor]) -> AuditConnection:
        return self.adapter_for(descriptor).connect(descriptor)

    def ping(self, descriptor: Optional[Descriptor]) -> bool:
        with self.open(descriptor) as conn:
            conn.query("SELECT 1 AS ok")
        return True

    def dispose(self) -> None:
        for adapter in self.adapters.values():
            adapter.dispose()
