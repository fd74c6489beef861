"""CRM-side conversion rows for the marketing report.

Three variants are fetched: subscriptions (with customer and upsell counts),
trial invoices (counted per rate mode) and one-time sales. They share the
ConversionRow shape so the same index and matcher serve all three.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

from attributionpivot.db import SqlDialect, SqlParams, SqlQuery
from attributionpivot.dimensions import OTS_RECORD_FILTER, RateModeConfig
from attributionpivot.planner import rate_mode_from_clause
from attributionpivot.util import parse_iso_date, to_int


Grain = Literal["tracking", "source", "source_country"]
GRAINS: tuple[str, ...] = ("tracking", "source", "source_country")

COUNT_FIELDS: tuple[str, ...] = (
    "subscription_count",
    "customer_count",
    "upsell_count",
    "upsells_approved_count",
    "ots_count",
    "ots_approved_count",
    "trial_count",
    "trials_approved_count",
    "on_hold_count",
)


@dataclass(frozen=True)
class ConversionRow:
    source: str | None = None
    campaign_id: str | None = None
    adset_id: str | None = None
    ad_id: str | None = None
    country: str | None = None
    date: date | None = None
    subscription_count: int = 0
    customer_count: int = 0
    upsell_count: int = 0
    upsells_approved_count: int = 0
    ots_count: int = 0
    ots_approved_count: int = 0
    trial_count: int = 0
    trials_approved_count: int = 0
    on_hold_count: int = 0


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def conversion_row_from_db(r: dict[str, Any]) -> ConversionRow:
    d = r.get("date")
    return ConversionRow(
        source=_opt_str(r.get("source")),
        campaign_id=_opt_str(r.get("campaign_id")),
        adset_id=_opt_str(r.get("adset_id")),
        ad_id=_opt_str(r.get("ad_id")),
        country=_opt_str(r.get("country")),
        date=parse_iso_date(str(d)) if d else None,
        **{name: to_int(r.get(name)) for name in COUNT_FIELDS},
    )


def _grain_columns(grain: str, tracking_alias: str, customer_alias: str = "c") -> list[str]:
    if grain == "tracking":
        return [
            f"{tracking_alias}.tracking_id_4",
            f"{tracking_alias}.tracking_id_2",
            f"{tracking_alias}.tracking_id",
        ]
    if grain == "source_country":
        return [f"LOWER({customer_alias}.country)"]
    if grain == "source":
        return []
    raise ValueError(f"grain must be one of: {', '.join(GRAINS)}")


def _select_grain(grain: str, tracking_alias: str) -> list[str]:
    cols = _grain_columns(grain, tracking_alias)
    if grain == "tracking":
        return [f"{cols[0]} AS campaign_id", f"{cols[1]} AS adset_id", f"{cols[2]} AS ad_id"]
    if grain == "source_country":
        return [f"{cols[0]} AS country"]
    return []


def _render(select: list[str], from_lines: list[str], where: list[str], group_by: list[str], limit: str) -> str:
    return "\n".join(
        [
            "SELECT",
            "  " + ",\n  ".join(select),
            *from_lines,
            "WHERE " + "\n  AND ".join(where),
            "GROUP BY " + ", ".join(group_by),
            f"LIMIT {limit}",
        ]
    )


def build_subscription_query(
    dialect: SqlDialect,
    *,
    start_date: str,
    end_date: str,
    grain: str,
    row_cap: int,
) -> SqlQuery:
    params = SqlParams(dialect)
    date_expr = "DATE(s.date_create)"
    upsell_tag = dialect.concat("'%parent-sub-id='", "s.id", "'%'")
    select = [
        "LOWER(sr.source) AS source",
        *_select_grain(grain, "s"),
        f"{date_expr} AS date",
        "COUNT(DISTINCT s.id) AS subscription_count",
        "COUNT(DISTINCT CASE WHEN DATE(c.date_registered) = DATE(s.date_create) THEN s.customer_id END) AS customer_count",
        "COUNT(DISTINCT uo.id) AS upsell_count",
        "COUNT(DISTINCT CASE WHEN uo.is_marked = 1 THEN uo.id END) AS upsells_approved_count",
    ]
    from_lines = [
        "FROM subscription s",
        "LEFT JOIN customer c ON c.id = s.customer_id",
        "LEFT JOIN source sr ON sr.id = s.source_id",
        f"LEFT JOIN invoice uo ON uo.customer_id = s.customer_id AND uo.deleted = 0 AND uo.tag LIKE {upsell_tag}",
    ]
    where = [
        f"{date_expr} BETWEEN {params.bind(start_date)} AND {params.bind(end_date)}",
        "s.deleted = 0",
    ]
    group_by = ["LOWER(sr.source)", *_grain_columns(grain, "s"), date_expr]
    sql = _render(select, from_lines, where, group_by, params.bind(row_cap))
    return SqlQuery(sql=sql, params=params.values)


def build_trial_query(
    mode: RateModeConfig,
    dialect: SqlDialect,
    *,
    start_date: str,
    end_date: str,
    grain: str,
    row_cap: int,
) -> SqlQuery:
    """Trial invoices counted with the rate mode's date field and matched condition."""
    params = SqlParams(dialect)
    date_expr = f"DATE({mode.date_field})"
    select = [
        "LOWER(sr.source) AS source",
        *_select_grain(grain, "s"),
        f"{date_expr} AS date",
        "COUNT(DISTINCT i.id) AS trial_count",
        f"COUNT(DISTINCT CASE WHEN {mode.matched_condition} THEN i.id END) AS trials_approved_count",
        "COUNT(DISTINCT CASE WHEN i.on_hold = 1 THEN i.id END) AS on_hold_count",
    ]
    from_lines = [
        *rate_mode_from_clause(mode),
        "LEFT JOIN customer c ON c.id = s.customer_id",
        "LEFT JOIN source sr ON sr.id = s.source_id",
    ]
    where = [
        f"{date_expr} BETWEEN {params.bind(start_date)} AND {params.bind(end_date)}",
        "s.deleted = 0",
        # An outer invoice join would otherwise yield rows without a trial.
        "i.id IS NOT NULL",
        *mode.exclusions,
    ]
    group_by = ["LOWER(sr.source)", *_grain_columns(grain, "s"), date_expr]
    sql = _render(select, from_lines, where, group_by, params.bind(row_cap))
    return SqlQuery(sql=sql, params=params.values)


def build_ots_query(
    dialect: SqlDialect,
    *,
    start_date: str,
    end_date: str,
    grain: str,
    row_cap: int,
) -> SqlQuery:
    params = SqlParams(dialect)
    date_expr = "DATE(i.invoice_date)"
    select = [
        "LOWER(sr.source) AS source",
        *_select_grain(grain, "i"),
        f"{date_expr} AS date",
        "COUNT(DISTINCT i.id) AS ots_count",
        "COUNT(DISTINCT CASE WHEN i.is_marked = 1 THEN i.id END) AS ots_approved_count",
    ]
    from_lines = [
        "FROM invoice i",
        "LEFT JOIN customer c ON c.id = i.customer_id",
        "LEFT JOIN source sr ON sr.id = i.source_id",
    ]
    where = [
        OTS_RECORD_FILTER,
        f"{date_expr} BETWEEN {params.bind(start_date)} AND {params.bind(end_date)}",
    ]
    group_by = ["LOWER(sr.source)", *_grain_columns(grain, "i"), date_expr]
    sql = _render(select, from_lines, where, group_by, params.bind(row_cap))
    return SqlQuery(sql=sql, params=params.values)


def build_conversion_queries(
    mode: RateModeConfig,
    dialect: SqlDialect,
    *,
    start_date: str,
    end_date: str,
    grain: str,
    row_cap: int,
) -> dict[str, SqlQuery]:
    kwargs: dict[str, Any] = {"start_date": start_date, "end_date": end_date, "grain": grain, "row_cap": row_cap}
    return {
        "subscriptions": build_subscription_query(dialect, **kwargs),
        "trials": build_trial_query(mode, dialect, **kwargs),
        "ots": build_ots_query(dialect, **kwargs),
    }
