"""Drill-down query planning.

All builders are plain functions over explicit config values (dimension
registry, join catalog, rate mode, dialect). Each returns an SqlQuery whose
placeholders follow the dialect of the data source it will run on.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from attributionpivot.db import SqlDialect, SqlParams, SqlQuery
from attributionpivot.dimensions import (
    CRM_JOINS,
    UNKNOWN,
    DimensionConfig,
    JoinDirection,
    RateModeConfig,
)
from attributionpivot.errors import PivotValidationError
from attributionpivot.periods import TimePeriodColumn
from attributionpivot.util import iso_date


DETAIL_METRICS: tuple[str, ...] = ("trials", "approved")
TABLE_FILTER_OPERATORS: tuple[str, ...] = ("equals", "not_equals", "contains", "not_contains")
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class DimensionQuerySpec:
    dimensions: tuple[str, ...]
    depth: int
    parent_filters: Mapping[str, str] = field(default_factory=dict)
    rate_mode: str = "approval"

    @property
    def current_dimension(self) -> str:
        return self.dimensions[self.depth]

    @property
    def ancestors(self) -> tuple[str, ...]:
        return self.dimensions[: self.depth]

    @property
    def has_children(self) -> bool:
        return self.depth < len(self.dimensions) - 1


@dataclass(frozen=True)
class TableFilter:
    dimension: str
    operator: str
    value: str


def validate_spec(spec: DimensionQuerySpec, registry: Mapping[str, DimensionConfig]) -> None:
    if not spec.dimensions:
        raise PivotValidationError("At least one dimension is required")
    if spec.depth < 0 or spec.depth >= len(spec.dimensions):
        raise PivotValidationError(
            f"Depth {spec.depth} is out of range for {len(spec.dimensions)} dimension(s)"
        )
    for dim in spec.dimensions:
        resolve_dimension(registry, dim)
    for dim in spec.parent_filters:
        if dim not in spec.dimensions:
            raise PivotValidationError(f"Filter dimension '{dim}' is not part of the dimension list")


def resolve_dimension(registry: Mapping[str, DimensionConfig], dimension: str) -> DimensionConfig:
    config = registry.get(dimension)
    if config is None:
        raise PivotValidationError(f"Unknown dimension: {dimension}")
    return config


def dimension_condition(config: DimensionConfig, value: str, params: SqlParams) -> str:
    # "Unknown" is the display label for missing values, never a stored value.
    if value == UNKNOWN:
        return config.null_check
    return f"{config.column} = {params.bind(value)}"


def build_parent_filters(
    spec: DimensionQuerySpec,
    registry: Mapping[str, DimensionConfig],
    params: SqlParams,
    *,
    include_current: bool = False,
) -> list[str]:
    dims = spec.dimensions[: spec.depth + 1] if include_current else spec.ancestors
    clauses: list[str] = []
    for dim in dims:
        value = spec.parent_filters.get(dim)
        if value is None:
            continue
        clauses.append(dimension_condition(resolve_dimension(registry, dim), value, params))
    return clauses


def build_table_filters(
    filters: Iterable[TableFilter],
    registry: Mapping[str, DimensionConfig],
    params: SqlParams,
) -> list[str]:
    clauses: list[str] = []
    for f in filters:
        config = resolve_dimension(registry, f.dimension)
        if f.operator == "equals":
            clauses.append(dimension_condition(config, f.value, params))
        elif f.operator == "not_equals":
            if f.value == UNKNOWN:
                clauses.append(f"NOT {config.null_check}")
            else:
                clauses.append(f"({config.column} IS NULL OR {config.column} <> {params.bind(f.value)})")
        elif f.operator == "contains":
            clauses.append(f"LOWER({config.column}) LIKE {params.bind(f'%{f.value.lower()}%')}")
        elif f.operator == "not_contains":
            clauses.append(
                f"({config.column} IS NULL OR LOWER({config.column}) NOT LIKE {params.bind(f'%{f.value.lower()}%')})"
            )
        else:
            raise PivotValidationError(
                f"Unknown filter operator '{f.operator}'; expected one of: {', '.join(TABLE_FILTER_OPERATORS)}"
            )
    return clauses


def collect_joins(
    dimensions: Iterable[str],
    registry: Mapping[str, DimensionConfig],
    catalog: Mapping[str, str],
    *,
    overrides: Mapping[str, str] | None = None,
    extra: Sequence[str] = (),
) -> list[str]:
    """Render the JOIN clauses the given dimensions need, in order, each once."""
    overrides = overrides or {}
    seen: list[str] = []
    rendered: list[str] = []

    def add(name: str, direction: JoinDirection) -> None:
        resolved = overrides.get(name, name)
        if resolved in seen:
            return
        seen.append(resolved)
        rendered.append(f"{direction.value} {catalog[resolved]}")

    for dim in dimensions:
        config = resolve_dimension(registry, dim)
        for name in config.joins:
            add(name, config.join_direction)
    for name in extra:
        add(name, JoinDirection.INCLUSIVE)
    return rendered


def clamp_page_size(page_size: int) -> int:
    return max(1, min(int(page_size), MAX_PAGE_SIZE))


def clamp_limit(limit: int | None, row_cap: int) -> int:
    if limit is None:
        return row_cap
    return max(1, min(int(limit), row_cap))


def period_range(periods: Sequence[TimePeriodColumn]) -> tuple[str, str]:
    return iso_date(periods[0].start_date), iso_date(periods[-1].end_date)


def rate_mode_from_clause(
    mode: RateModeConfig,
    *,
    listing: bool = False,
    matched_only: bool = False,
) -> list[str]:
    """FROM + invoice/status joins shared by rate counts and record listings.

    Aggregates keep the mode's invoice join and an outer status join so that
    unmatched trials still count in the denominator. Listings enumerate real
    invoices, and matched listings join the status table exclusively.
    """
    invoice_dir = JoinDirection.EXCLUSIVE if listing else mode.invoice_join
    lines = [
        "FROM subscription s",
        f"{invoice_dir.value} invoice i ON i.subscription_id = s.id AND {mode.record_filter}",
    ]
    if mode.status_join:
        status_dir = JoinDirection.EXCLUSIVE if (listing and matched_only) else JoinDirection.INCLUSIVE
        lines.append(f"{status_dir.value} {mode.status_join}")
    return lines


def _where(clauses: Sequence[str]) -> str:
    return "WHERE " + "\n  AND ".join(clauses) if clauses else ""


def build_rate_count_query(
    spec: DimensionQuerySpec,
    periods: Sequence[TimePeriodColumn],
    mode: RateModeConfig,
    registry: Mapping[str, DimensionConfig],
    dialect: SqlDialect,
    *,
    row_cap: int,
) -> SqlQuery:
    """One row per value of the current dimension with per-period trial and matched counts."""
    params = SqlParams(dialect)
    current = resolve_dimension(registry, spec.current_dimension)
    date_expr = f"DATE({mode.date_field})"

    columns = [f"{current.column} AS dimension_value"]
    for p in periods:
        start, end = iso_date(p.start_date), iso_date(p.end_date)
        columns.append(
            f"COUNT(DISTINCT CASE WHEN {date_expr} BETWEEN {params.bind(start)} AND {params.bind(end)} "
            f"THEN i.id END) AS {p.key}_trials"
        )
        columns.append(
            f"COUNT(DISTINCT CASE WHEN {date_expr} BETWEEN {params.bind(start)} AND {params.bind(end)} "
            f"AND {mode.matched_condition} THEN i.id END) AS {p.key}_approved"
        )

    joins = collect_joins(spec.dimensions[: spec.depth + 1], registry, CRM_JOINS, overrides=mode.join_overrides)

    range_start, range_end = period_range(periods)
    where = [f"{date_expr} BETWEEN {params.bind(range_start)} AND {params.bind(range_end)}"]
    where.extend(mode.exclusions)
    where.extend(build_parent_filters(spec, registry, params))

    sql = "\n".join(
        [
            "SELECT",
            "  " + ",\n  ".join(columns),
            *rate_mode_from_clause(mode),
            *joins,
            _where(where),
            f"GROUP BY {current.column}",
            f"ORDER BY {current.column}",
            f"LIMIT {params.bind(row_cap)}",
        ]
    )
    return SqlQuery(sql=sql, params=params.values)


@dataclass(frozen=True)
class DetailQueryPair:
    listing: SqlQuery
    count: SqlQuery


_DETAIL_COLUMNS = (
    "i.id AS invoice_id",
    "s.id AS subscription_id",
    "s.date_create AS subscription_date",
    "i.invoice_date AS invoice_date",
    "i.is_marked AS is_marked",
    "c.email AS customer_email",
    "c.country AS country",
    "sr.source AS source",
    "s.tracking_id_4 AS campaign_id",
    "s.tracking_id_2 AS adset_id",
    "s.tracking_id AS ad_id",
)


def build_rate_detail_queries(
    spec: DimensionQuerySpec,
    mode: RateModeConfig,
    registry: Mapping[str, DimensionConfig],
    dialect: SqlDialect,
    *,
    start_date: str,
    end_date: str,
    metric: str,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> DetailQueryPair:
    """Record listing behind one rate cell plus the matching total-count query.

    `spec.parent_filters` holds the values of every dimension down to and
    including the row being inspected.
    """
    if metric not in DETAIL_METRICS:
        raise PivotValidationError(f"metric must be one of: {', '.join(DETAIL_METRICS)}")
    if page < 1:
        raise PivotValidationError("page must be >= 1")
    page_size = clamp_page_size(page_size)
    matched_only = metric == "approved"

    joins = collect_joins(
        spec.dimensions[: spec.depth + 1],
        registry,
        CRM_JOINS,
        overrides=mode.join_overrides,
        extra=("customer", "source"),
    )
    from_lines = [*rate_mode_from_clause(mode, listing=True, matched_only=matched_only), *joins]
    date_expr = f"DATE({mode.date_field})"

    def where_clause(params: SqlParams) -> str:
        where = [f"{date_expr} BETWEEN {params.bind(start_date)} AND {params.bind(end_date)}"]
        where.extend(mode.exclusions)
        where.extend(build_parent_filters(spec, registry, params, include_current=True))
        if matched_only:
            where.append(mode.matched_condition)
        return _where(where)

    count_params = SqlParams(dialect)
    count_sql = "\n".join(["SELECT COUNT(DISTINCT i.id) AS total", *from_lines, where_clause(count_params)])

    list_params = SqlParams(dialect)
    customer_name = dialect.concat("COALESCE(c.first_name, '')", "' '", "COALESCE(c.last_name, '')")
    list_where = where_clause(list_params)
    list_sql = "\n".join(
        [
            "SELECT DISTINCT",
            "  " + ",\n  ".join([*_DETAIL_COLUMNS, f"{customer_name} AS customer_name", f"{mode.date_field} AS record_date"]),
            *from_lines,
            list_where,
            "ORDER BY record_date DESC, invoice_id DESC",
            f"LIMIT {list_params.bind(page_size)} OFFSET {list_params.bind((page - 1) * page_size)}",
        ]
    )
    return DetailQueryPair(
        listing=SqlQuery(sql=list_sql, params=list_params.values),
        count=SqlQuery(sql=count_sql, params=count_params.values),
    )
