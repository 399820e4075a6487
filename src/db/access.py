"""Read-only data-access capability for generated queries.

Queries are described with Prisma-style argument objects (select / where /
orderBy / take / skip, plus count, aggregate and groupBy selectors) and
compiled into a single parameterized Postgres statement per call. Rows come
back as JSON objects built with jsonb_build_object, so nested relation
selects and `_count` need no second round trip.

Every statement runs inside a read-only transaction with a local statement
timeout. Unknown collections, unknown or hidden fields and unsupported
arguments raise DataAccessError rather than being ignored.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import asyncpg

from .schema import COLLECTIONS, ENUMS, Collection, Field, Relation, get_collection

logger = logging.getLogger("courselens.access")

_DEFAULT_ROW_LIMIT = 200
_DEFAULT_STATEMENT_TIMEOUT_MS = 5000

_FIND_ARGS = {"select", "where", "orderBy", "take", "skip"}
_COUNT_ARGS = {"select", "where"}
_AGGREGATORS = ("_count", "_avg", "_sum", "_min", "_max")
_AGGREGATE_ARGS = {"where", *_AGGREGATORS}
_GROUP_BY_ARGS = {"by", "where", "orderBy", "take", "skip", *_AGGREGATORS}
_RELATION_SELECT_ARGS = {"select", "where", "orderBy", "take", "skip"}

_SCALAR_FILTERS = {
    "equals", "not", "in", "notIn", "lt", "lte", "gt", "gte",
    "contains", "startsWith", "endsWith", "mode",
}
_COMPARISONS = {"lt": "<", "lte": "<=", "gt": ">", "gte": ">="}
_TEXT_FILTERS = {"contains", "startsWith", "endsWith"}
_NUMERIC_TYPES = {"Int", "Float", "Decimal", "BigInt"}
_AGGREGATE_SQL = {"_avg": "AVG", "_sum": "SUM", "_min": "MIN", "_max": "MAX"}
_UTC_ISO_FORMAT = """'YYYY-MM-DD"T"HH24:MI:SS.MS"Z"'"""

# Hints for arguments models commonly reach for that this layer refuses.
_ARG_HINTS = {
    "include": "Use `select` with nested relation selects instead of `include`.",
    "distinct": "`distinct` is not supported; use groupBy with `by` instead.",
    "cursor": "`cursor` is not supported; use `skip` and `take`.",
    "having": "`having` is not supported; filter with `where` instead.",
}


class DataAccessError(Exception):
    """The query cannot be answered as written (bad field, filter or argument)."""


@dataclass(frozen=True)
class AccessSettings:
    row_limit: int = _DEFAULT_ROW_LIMIT
    statement_timeout_ms: int = _DEFAULT_STATEMENT_TIMEOUT_MS

    @classmethod
    def from_env(cls) -> "AccessSettings":
        return cls(
            row_limit=int(os.getenv("QUERY_ROW_LIMIT", str(_DEFAULT_ROW_LIMIT))),
            statement_timeout_ms=int(
                os.getenv("QUERY_STATEMENT_TIMEOUT_MS", str(_DEFAULT_STATEMENT_TIMEOUT_MS))
            ),
        )


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def _q(name: str) -> str:
    """Quote an identifier."""
    return '"' + name.replace('"', '""') + '"'


def _lit(name: str) -> str:
    """Quote a JSON key as a string literal."""
    return "'" + name.replace("'", "''") + "'"


def _json_value(f: Field, expr: str) -> str:
    """Wrap a column expression for jsonb output.

    DateTime columns hold naive UTC; render them as ISO-8601 with a `Z`
    suffix so consumers never mistake them for local time.
    """
    if f.is_datetime and not f.is_list:
        return f"to_char({expr}, {_UTC_ISO_FORMAT})"
    return expr


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_timestamp(value: Any, field_name: str) -> datetime:
    """Columns are `timestamp` holding UTC; bind naive UTC datetimes."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            raise DataAccessError(
                f"Invalid DateTime value {value!r} for `{field_name}`; use an ISO-8601 string"
            )
    if not isinstance(value, datetime):
        raise DataAccessError(f"Invalid DateTime value {value!r} for `{field_name}`")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _check_args(args: dict[str, Any], allowed: set[str], operation: str) -> None:
    for key in args:
        if key in allowed:
            continue
        hint = _ARG_HINTS.get(key, f"Allowed arguments: {', '.join(sorted(allowed))}.")
        raise DataAccessError(f"Unknown argument `{key}` for {operation}. {hint}")


def _non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise DataAccessError(f"`{name}` must be a non-negative integer")
    return value


def get_collection_or_raise(accessor: str) -> Collection:
    collection = get_collection(accessor)
    if collection is None:
        raise DataAccessError(
            f"Unknown model `{accessor}`. Available: {', '.join(COLLECTIONS)}"
        )
    return collection


# ---------------------------------------------------------------------------
# Statement builder
# ---------------------------------------------------------------------------

class _Builder:
    """Accumulates bind parameters and table aliases for one statement."""

    def __init__(self) -> None:
        self.params: list[Any] = []
        self._alias_count = 0

    def param(self, value: Any) -> str:
        self.params.append(value)
        return f"${len(self.params)}"

    def alias(self) -> str:
        alias = f"t{self._alias_count}"
        self._alias_count += 1
        return alias

    # -- fields --

    def field(self, c: Collection, name: str) -> Field:
        f = c.field(name)
        if f is None:
            raise DataAccessError(f"Unknown field `{name}` on model `{c.model}`")
        if f.hidden:
            raise DataAccessError(f"Field `{name}` on model `{c.model}` is not readable")
        return f

    def coerce(self, f: Field, value: Any) -> Any:
        if f.type == "Json" or f.is_list:
            raise DataAccessError(f"Filtering on `{f.name}` is not supported")
        if value is None:
            return None
        if f.is_datetime:
            return _to_timestamp(value, f.name)
        if f.type in ENUMS and isinstance(value, str) and value not in ENUMS[f.type]:
            raise DataAccessError(
                f"Invalid value `{value}` for enum {f.type}. "
                f"Expected one of: {', '.join(ENUMS[f.type])}"
            )
        return value

    # -- projection --

    def projection(self, c: Collection, alias: str, select: Any) -> str:
        if not isinstance(select, dict) or not select:
            raise DataAccessError("`select` must be a non-empty object")

        pairs: list[str] = []
        for key, value in select.items():
            if value is False or value is None:
                continue
            if key == "_count":
                pairs.append(f"'_count', {self.count_projection(c, alias, value)}")
                continue
            relation = c.relation(key)
            if relation is not None:
                pairs.append(f"{_lit(key)}, {self.relation_projection(c, alias, relation, value)}")
                continue
            f = self.field(c, key)
            if value is not True:
                raise DataAccessError(
                    f"Scalar field `{key}` on model `{c.model}` can only be selected with `true`"
                )
            pairs.append(f"{_lit(key)}, {_json_value(f, f'{alias}.{_q(f.name)}')}")

        if not pairs:
            raise DataAccessError("`select` must select at least one field")
        return f"jsonb_build_object({', '.join(pairs)})"

    def relation_projection(self, c: Collection, alias: str, rel: Relation, value: Any) -> str:
        target = COLLECTIONS[rel.target]
        if value is True:
            options: dict[str, Any] = {}
        elif isinstance(value, dict):
            options = value
            _check_args(options, _RELATION_SELECT_ARGS, f"relation `{rel.name}`")
        else:
            raise DataAccessError(
                f"Relation `{rel.name}` must be selected with `true` or {{ select: {{ ... }} }}"
            )
        inner_select = options.get("select") or {f.name: True for f in target.visible_fields()}

        sub = self.alias()
        join = f"{sub}.{_q(rel.foreign)} = {alias}.{_q(rel.local)}"
        row = self.projection(target, sub, inner_select)

        if not rel.many:
            if set(options) - {"select"}:
                raise DataAccessError(
                    f"Relation `{rel.name}` is a single record; only `select` is allowed"
                )
            return f"(SELECT {row} FROM {_q(target.table)} {sub} WHERE {join})"

        conditions = [join]
        if "where" in options:
            conditions.append(self.where(target, sub, options["where"]))
        order = self.order_by(target, sub, options.get("orderBy"))
        limit = self.limit_offset(options.get("take"), options.get("skip"), cap=None)
        rows = self.alias()
        return (
            f"(SELECT COALESCE(jsonb_agg({rows}.obj), '[]'::jsonb) FROM ("
            f"SELECT {row} AS obj FROM {_q(target.table)} {sub} "
            f"WHERE {' AND '.join(conditions)}{order}{limit}) {rows})"
        )

    def count_projection(self, c: Collection, alias: str, value: Any) -> str:
        spec = value.get("select") if isinstance(value, dict) and "select" in value else value
        if spec is True:
            relations = [r for r in c.relations if r.many]
        elif isinstance(spec, dict):
            relations = []
            for name, flag in spec.items():
                if not flag:
                    continue
                rel = c.relation(name)
                if rel is None or not rel.many:
                    raise DataAccessError(
                        f"`_count` on model `{c.model}` only accepts list relations; "
                        f"`{name}` is not one"
                    )
                relations.append(rel)
        else:
            raise DataAccessError("`_count` must be `true` or { select: { relation: true } }")

        if not relations:
            raise DataAccessError(f"`_count` on model `{c.model}` selects no relations")

        pairs: list[str] = []
        for rel in relations:
            target = COLLECTIONS[rel.target]
            sub = self.alias()
            pairs.append(
                f"{_lit(rel.name)}, (SELECT COUNT(*) FROM {_q(target.table)} {sub} "
                f"WHERE {sub}.{_q(rel.foreign)} = {alias}.{_q(rel.local)})"
            )
        return f"jsonb_build_object({', '.join(pairs)})"

    # -- filters --

    def where(self, c: Collection, alias: str, where: Any) -> str:
        if not isinstance(where, dict):
            raise DataAccessError("`where` must be an object")

        conditions: list[str] = []
        for key, value in where.items():
            if key in ("AND", "OR", "NOT"):
                conditions.append(self.logical(c, alias, key, value))
                continue
            relation = c.relation(key)
            if relation is not None:
                conditions.append(self.relation_filter(c, alias, relation, value))
                continue
            f = self.field(c, key)
            conditions.append(self.scalar_filter(f, f"{alias}.{_q(f.name)}", value))

        if not conditions:
            return "TRUE"
        return " AND ".join(f"({cond})" for cond in conditions)

    def logical(self, c: Collection, alias: str, op: str, value: Any) -> str:
        items = value if isinstance(value, list) else [value]
        parts = [self.where(c, alias, item) for item in items]
        if op == "AND":
            return " AND ".join(f"({p})" for p in parts) if parts else "TRUE"
        if op == "OR":
            return " OR ".join(f"({p})" for p in parts) if parts else "FALSE"
        if not parts:
            return "TRUE"
        return "NOT (" + " AND ".join(f"({p})" for p in parts) + ")"

    def relation_filter(self, c: Collection, alias: str, rel: Relation, value: Any) -> str:
        target = COLLECTIONS[rel.target]

        def exists(inner: Any, negate: bool = False, invert: bool = False) -> str:
            sub = self.alias()
            cond = f"{sub}.{_q(rel.foreign)} = {alias}.{_q(rel.local)}"
            if inner is not None:
                inner_sql = self.where(target, sub, inner)
                cond += f" AND NOT ({inner_sql})" if invert else f" AND ({inner_sql})"
            clause = f"EXISTS (SELECT 1 FROM {_q(target.table)} {sub} WHERE {cond})"
            return f"NOT {clause}" if negate else clause

        if rel.many:
            if not isinstance(value, dict) or not value or set(value) - {"some", "every", "none"}:
                raise DataAccessError(
                    f"Filter on list relation `{rel.name}` must use `some`, `every` or `none`"
                )
            parts: list[str] = []
            for op, inner in value.items():
                if op == "some":
                    parts.append(exists(inner))
                elif op == "none":
                    parts.append(exists(inner, negate=True))
                else:
                    parts.append(exists(inner, negate=True, invert=True))
            return " AND ".join(parts)

        if value is None:
            return exists(None, negate=True)
        if isinstance(value, dict) and value and set(value) <= {"is", "isNot"}:
            parts = []
            if "is" in value:
                inner = value["is"]
                parts.append(exists(None, negate=True) if inner is None else exists(inner))
            if "isNot" in value:
                inner = value["isNot"]
                parts.append(exists(None) if inner is None else exists(inner, negate=True))
            return " AND ".join(parts)
        return exists(value)

    def scalar_filter(self, f: Field, column: str, value: Any) -> str:
        if isinstance(value, dict):
            return self.operator_filter(f, column, value)
        return self.equals(f, column, value)

    def equals(self, f: Field, column: str, value: Any, insensitive: bool = False) -> str:
        value = self.coerce(f, value)
        if value is None:
            return f"{column} IS NULL"
        if insensitive and f.is_text:
            return f"LOWER({column}) = LOWER({self.param(value)})"
        return f"{column} = {self.param(value)}"

    def operator_filter(self, f: Field, column: str, ops: dict[str, Any]) -> str:
        for op in ops:
            if op not in _SCALAR_FILTERS:
                raise DataAccessError(f"Unknown filter `{op}` on field `{f.name}`")

        mode = ops.get("mode", "default")
        if mode not in ("default", "insensitive"):
            raise DataAccessError("`mode` must be 'default' or 'insensitive'")
        insensitive = mode == "insensitive"

        parts: list[str] = []
        for op, value in ops.items():
            if op == "mode":
                continue
            if op == "equals":
                parts.append(self.equals(f, column, value, insensitive))
            elif op == "not":
                if isinstance(value, dict):
                    parts.append(f"NOT ({self.operator_filter(f, column, value)})")
                elif value is None:
                    parts.append(f"{column} IS NOT NULL")
                else:
                    parts.append(f"{column} IS DISTINCT FROM {self.param(self.coerce(f, value))}")
            elif op in ("in", "notIn"):
                if not isinstance(value, list):
                    raise DataAccessError(f"`{op}` on field `{f.name}` expects a list")
                values = [self.coerce(f, v) for v in value]
                expr = f"{column} = ANY({self.param(values)})"
                parts.append(expr if op == "in" else f"NOT ({expr})")
            elif op in _COMPARISONS:
                if value is None:
                    raise DataAccessError(f"`{op}` on field `{f.name}` cannot compare with null")
                parts.append(f"{column} {_COMPARISONS[op]} {self.param(self.coerce(f, value))}")
            else:
                if not f.is_text:
                    raise DataAccessError(f"`{op}` only applies to text fields, not `{f.name}`")
                if not isinstance(value, str):
                    raise DataAccessError(f"`{op}` on field `{f.name}` expects a string")
                pattern = _escape_like(value)
                if op == "contains":
                    pattern = f"%{pattern}%"
                elif op == "startsWith":
                    pattern = f"{pattern}%"
                else:
                    pattern = f"%{pattern}"
                like = "ILIKE" if insensitive else "LIKE"
                parts.append(f"{column} {like} {self.param(pattern)}")

        if not parts:
            return "TRUE"
        return " AND ".join(parts)

    # -- ordering / paging --

    def order_by(
        self,
        c: Collection,
        alias: str,
        order: Any,
        aggregates_allowed: bool = False,
    ) -> str:
        if order is None:
            return ""
        items = order if isinstance(order, list) else [order]

        parts: list[str] = []
        for item in items:
            if not isinstance(item, dict):
                raise DataAccessError("`orderBy` entries must be objects like { field: 'asc' }")
            for key, direction in item.items():
                if aggregates_allowed and key in _AGGREGATORS:
                    if not isinstance(direction, dict):
                        raise DataAccessError(f"`orderBy.{key}` must be {{ field: 'asc' | 'desc' }}")
                    for name, inner_dir in direction.items():
                        column = self.aggregate_column(c, alias, key, name)
                        parts.append(f"{column} {self.direction(inner_dir)}")
                    continue
                if c.relation(key) is not None:
                    raise DataAccessError(f"Ordering by relation `{key}` is not supported")
                f = self.field(c, key)
                parts.append(f"{alias}.{_q(f.name)} {self.direction(direction)}")

        return f" ORDER BY {', '.join(parts)}" if parts else ""

    @staticmethod
    def direction(value: Any) -> str:
        nulls = ""
        if isinstance(value, dict):
            if value.get("nulls") in ("first", "last"):
                nulls = f" NULLS {value['nulls'].upper()}"
            value = value.get("sort")
        if value not in ("asc", "desc"):
            raise DataAccessError("Sort direction must be 'asc' or 'desc'")
        return value.upper() + nulls

    @staticmethod
    def limit_offset(take: Any, skip: Any, cap: int | None) -> str:
        limit: int | None = cap
        if take is not None:
            limit = _non_negative_int(take, "take")
            if cap is not None:
                limit = min(limit, cap)
        sql = f" LIMIT {limit}" if limit is not None else ""
        if skip is not None:
            sql += f" OFFSET {_non_negative_int(skip, 'skip')}"
        return sql

    # -- aggregates --

    def aggregate_column(self, c: Collection, alias: str, aggregator: str, name: str) -> str:
        if aggregator == "_count":
            if name == "_all":
                return "COUNT(*)"
            return f"COUNT({alias}.{_q(self.field(c, name).name)})"
        f = self.field(c, name)
        if aggregator in ("_avg", "_sum") and f.type not in _NUMERIC_TYPES:
            raise DataAccessError(f"`{aggregator}` only applies to numeric fields, not `{name}`")
        if f.type == "Json" or f.is_list:
            raise DataAccessError(f"`{aggregator}` does not apply to `{name}`")
        return _json_value(f, f"{_AGGREGATE_SQL[aggregator]}({alias}.{_q(f.name)})")

    def aggregate_pairs(self, c: Collection, alias: str, args: dict[str, Any]) -> list[str]:
        pairs: list[str] = []
        for aggregator in _AGGREGATORS:
            if aggregator not in args:
                continue
            spec = args[aggregator]
            if aggregator == "_count" and spec is True:
                pairs.append("'_count', COUNT(*)")
                continue
            if isinstance(spec, dict) and "select" in spec:
                spec = spec["select"]
            if not isinstance(spec, dict) or not spec:
                raise DataAccessError(f"`{aggregator}` must be an object like {{ field: true }}")
            inner = [
                f"{_lit(name)}, {self.aggregate_column(c, alias, aggregator, name)}"
                for name, flag in spec.items()
                if flag
            ]
            if not inner:
                raise DataAccessError(f"`{aggregator}` selects no fields")
            pairs.append(f"{_lit(aggregator)}, jsonb_build_object({', '.join(inner)})")
        return pairs


# ---------------------------------------------------------------------------
# Statement construction
# ---------------------------------------------------------------------------

def build_find(
    collection: str,
    args: dict[str, Any],
    row_limit: int | None,
    operation: str = "findMany",
) -> tuple[str, list[Any]]:
    """Compile a find-style query. Returns (sql, params); each row has an `obj` column."""
    c = get_collection_or_raise(collection)
    _check_args(args, _FIND_ARGS, operation)
    if "select" not in args:
        raise DataAccessError(f"{operation} requires `select`")

    b = _Builder()
    alias = b.alias()
    row = b.projection(c, alias, args["select"])
    where = b.where(c, alias, args.get("where") or {})
    order = b.order_by(c, alias, args.get("orderBy"))
    limit = b.limit_offset(args.get("take"), args.get("skip"), cap=row_limit)

    sql = f"SELECT {row} AS obj FROM {_q(c.table)} {alias} WHERE {where}{order}{limit}"
    return sql, b.params


def build_count(collection: str, args: dict[str, Any]) -> tuple[str, list[Any]]:
    c = get_collection_or_raise(collection)
    _check_args(args, _COUNT_ARGS, "count")

    b = _Builder()
    alias = b.alias()
    where = b.where(c, alias, args.get("where") or {})

    select = args.get("select")
    if select is None:
        value = "COUNT(*)"
    else:
        if not isinstance(select, dict) or not select:
            raise DataAccessError("`select` in count must be an object like { _all: true }")
        pairs = [
            f"{_lit(name)}, {b.aggregate_column(c, alias, '_count', name)}"
            for name, flag in select.items()
            if flag
        ]
        if not pairs:
            raise DataAccessError("`select` in count selects no fields")
        value = f"jsonb_build_object({', '.join(pairs)})"

    sql = f"SELECT {value} AS obj FROM {_q(c.table)} {alias} WHERE {where}"
    return sql, b.params


def build_aggregate(collection: str, args: dict[str, Any]) -> tuple[str, list[Any]]:
    c = get_collection_or_raise(collection)
    _check_args(args, _AGGREGATE_ARGS, "aggregate")

    b = _Builder()
    alias = b.alias()
    pairs = b.aggregate_pairs(c, alias, args)
    if not pairs:
        raise DataAccessError(
            "aggregate needs at least one of: " + ", ".join(_AGGREGATORS)
        )
    where = b.where(c, alias, args.get("where") or {})

    sql = (
        f"SELECT jsonb_build_object({', '.join(pairs)}) AS obj "
        f"FROM {_q(c.table)} {alias} WHERE {where}"
    )
    return sql, b.params


def build_group_by(
    collection: str,
    args: dict[str, Any],
    row_limit: int | None,
) -> tuple[str, list[Any]]:
    c = get_collection_or_raise(collection)
    _check_args(args, _GROUP_BY_ARGS, "groupBy")

    by = args.get("by")
    if isinstance(by, str):
        by = [by]
    if not isinstance(by, list) or not by or not all(isinstance(x, str) for x in by):
        raise DataAccessError("groupBy requires `by` as a non-empty list of field names")

    b = _Builder()
    alias = b.alias()
    fields = [b.field(c, name) for name in by]
    columns = [f"{alias}.{_q(f.name)}" for f in fields]
    pairs = [f"{_lit(name)}, {_json_value(f, col)}" for name, f, col in zip(by, fields, columns)]
    pairs.extend(b.aggregate_pairs(c, alias, args))
    where = b.where(c, alias, args.get("where") or {})
    order = b.order_by(c, alias, args.get("orderBy"), aggregates_allowed=True)
    limit = b.limit_offset(args.get("take"), args.get("skip"), cap=row_limit)

    sql = (
        f"SELECT jsonb_build_object({', '.join(pairs)}) AS obj "
        f"FROM {_q(c.table)} {alias} WHERE {where} "
        f"GROUP BY {', '.join(columns)}{order}{limit}"
    )
    return sql, b.params


# ---------------------------------------------------------------------------
# Capability
# ---------------------------------------------------------------------------

def _is_equality(value: Any) -> bool:
    if isinstance(value, dict):
        return set(value) == {"equals"} and value["equals"] is not None
    return value is not None


def unique_where(c: Collection, where: Any) -> dict[str, Any]:
    """Check a findUnique `where` names a whole unique key by equality.

    Compound keys may be given Prisma-style (`username_classId: {...}`); they
    are flattened into plain field conditions. Extra filters are kept.
    """
    if not isinstance(where, dict) or not where:
        raise DataAccessError("findUnique requires a `where` on a unique field")

    flat: dict[str, Any] = {}
    for key, value in where.items():
        compound = next(
            (k for k in c.unique_keys if len(k) > 1 and key == "_".join(k)), None
        )
        if compound is None:
            flat[key] = value
            continue
        if not isinstance(value, dict) or set(value) != set(compound):
            raise DataAccessError(f"`{key}` must give exactly: {', '.join(compound)}")
        flat.update(value)

    for key in c.unique_keys:
        if all(name in flat and _is_equality(flat[name]) for name in key):
            return flat

    options = ", ".join(" + ".join(k) for k in c.unique_keys)
    raise DataAccessError(
        f"findUnique on `{c.accessor}` needs equality on a unique key ({options}); "
        "use findFirst for other filters"
    )


def _decode(value: Any) -> Any:
    # asyncpg hands jsonb back as text unless a codec is registered.
    if isinstance(value, str):
        return json.loads(value)
    return value


class ReadOnlyDataAccess:
    """The only handle generated queries get into the database.

    Exposes read operations and nothing else.
    """

    def __init__(self, conn: asyncpg.Connection, settings: AccessSettings | None = None) -> None:
        self._conn = conn
        self._settings = settings or AccessSettings.from_env()

    async def find_many(self, collection: str, args: dict[str, Any]) -> list[Any]:
        sql, params = build_find(collection, args, self._settings.row_limit)
        rows = await self._fetch(sql, params)
        return [_decode(r["obj"]) for r in rows]

    async def find_first(self, collection: str, args: dict[str, Any]) -> Any:
        sql, params = build_find(collection, {**args, "take": 1}, 1, operation="findFirst")
        rows = await self._fetch(sql, params)
        return _decode(rows[0]["obj"]) if rows else None

    async def find_unique(self, collection: str, args: dict[str, Any]) -> Any:
        where = unique_where(get_collection_or_raise(collection), args.get("where"))
        sql, params = build_find(
            collection, {**args, "where": where, "take": 1}, 1, operation="findUnique",
        )
        rows = await self._fetch(sql, params)
        return _decode(rows[0]["obj"]) if rows else None

    async def count(self, collection: str, args: dict[str, Any]) -> Any:
        sql, params = build_count(collection, args)
        rows = await self._fetch(sql, params)
        return _decode(rows[0]["obj"]) if rows else 0

    async def aggregate(self, collection: str, args: dict[str, Any]) -> Any:
        sql, params = build_aggregate(collection, args)
        rows = await self._fetch(sql, params)
        return _decode(rows[0]["obj"]) if rows else {}

    async def group_by(self, collection: str, args: dict[str, Any]) -> list[Any]:
        sql, params = build_group_by(collection, args, self._settings.row_limit)
        rows = await self._fetch(sql, params)
        return [_decode(r["obj"]) for r in rows]

    async def _fetch(self, sql: str, params: list[Any]) -> list[asyncpg.Record]:
        logger.debug("read-only statement: %s", sql)
        timeout_ms = int(self._settings.statement_timeout_ms)
        try:
            async with self._conn.transaction(readonly=True):
                await self._conn.execute(f"SET LOCAL statement_timeout = {timeout_ms}")
                return await self._conn.fetch(sql, *params)
        except asyncpg.PostgresError as exc:
            raise DataAccessError(str(exc)) from exc
