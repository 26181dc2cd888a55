from __future__ import annotations

import re
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional, Sequence, Tuple, cast

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine, Result

_NUMBERED_PLACEHOLDER = re.compile(r"\$(\d+)")


def _bind_qmark(sql: str, params: Sequence[object]) -> Tuple[str, dict]:
    placeholders = sql.count("?")
    if placeholders != len(params):
        raise ValueError(
            f"Parameter count mismatch: expected {placeholders}, got {len(params)}."
        )

    bound_params: dict[str, object] = {}
    parts = sql.split("?")
    rebuilt = parts[0]
    for index, (part, value) in enumerate(zip(parts[1:], params)):
        key = f"p{index}"
        rebuilt += f":{key}{part}"
        bound_params[key] = value
    return rebuilt, bound_params


def _bind_numbered(sql: str, params: Sequence[object]) -> Tuple[str, dict]:
    positions = {int(match) for match in _NUMBERED_PLACEHOLDER.findall(sql)}
    if positions != set(range(1, len(params) + 1)):
        raise ValueError(
            f"Parameter count mismatch: expected {len(positions)}, got {len(params)}."
        )

    bound_params = {f"p{index - 1}": params[index - 1] for index in positions}
    rebuilt = _NUMBERED_PLACEHOLDER.sub(lambda m: f":p{int(m.group(1)) - 1}", sql)
    return rebuilt, bound_params


def _prepare_statement(
    sql: str, params: Sequence[object] | Mapping[str, object] | None
) -> Tuple[str, dict]:
    if params is None:
        return sql, {}
    if isinstance(params, Mapping):
        return sql, dict(params)
    if not isinstance(params, Sequence):
        raise TypeError("Unsupported parameter type; expected sequence or mapping.")

    if _NUMBERED_PLACEHOLDER.search(sql):
        return _bind_numbered(sql, params)
    return _bind_qmark(sql, params)


class ResultWrapper:
    def __init__(self, result: Result):
        self._result = result

    def fetchone(self) -> Optional[Mapping[str, object]]:
        row = self._result.fetchone()
        return None if row is None else cast(Mapping[str, object], row._mapping)

    def fetchall(self) -> list[Mapping[str, object]]:
        return [
            cast(Mapping[str, object], row._mapping) for row in self._result.fetchall()
        ]

    @property
    def rowcount(self) -> int:
        raw = getattr(self._result, "rowcount", None)
        return int(raw or 0)


class SQLAlchemyConnectionWrapper:
    def __init__(self, connection: Connection):
        self._connection = connection

    def execute(
        self,
        sql: str,
        params: Sequence[object] | Mapping[str, object] | None = None,
    ) -> ResultWrapper:
        statement, bound_params = _prepare_statement(sql, params)
        result = self._connection.execute(text(statement), bound_params)
        return ResultWrapper(result)

    def commit(self) -> None:
        self._connection.commit()

    def rollback(self) -> None:
        self._connection.rollback()

    def close(self) -> None:
        self._connection.close()


@contextmanager
def transactional_connection(engine: Engine) -> Iterator[SQLAlchemyConnectionWrapper]:
    # Always use an explicit transaction on a fresh connection so changes persist
    connection = engine.connect()
    transaction = connection.begin()
    wrapper = SQLAlchemyConnectionWrapper(connection)
    try:
        yield wrapper
    except Exception:
        transaction.rollback()
        connection.close()
        raise
    else:
        transaction.commit()
        connection.close()


def connection(engine: Engine) -> SQLAlchemyConnectionWrapper:
    conn = engine.connect()
    return SQLAlchemyConnectionWrapper(conn)
