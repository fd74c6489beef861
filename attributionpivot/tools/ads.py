from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

from attributionpivot.db import SqlDialect, SqlParams, SqlQuery
from attributionpivot.dimensions import ADS_DIMENSIONS, ADS_JOINS, UNKNOWN
from attributionpivot.planner import (
    DimensionQuerySpec,
    TableFilter,
    build_parent_filters,
    build_table_filters,
    collect_joins,
    resolve_dimension,
)
from attributionpivot.util import is_blank, is_present, parse_iso_date, to_float, to_int


@dataclass(frozen=True)
class SpendDimensionRow:
    dimension_value: str | None
    campaign_ids: frozenset[str] = frozenset()
    adset_ids: frozenset[str] = frozenset()
    ad_ids: frozenset[str] = frozenset()
    networks: frozenset[str] = frozenset()
    cost: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0
    # Set only when rows are broken down by day; restricts matches to those days.
    dates: frozenset[date] | None = None

    @property
    def label(self) -> str:
        return UNKNOWN if is_blank(self.dimension_value) else str(self.dimension_value)


def build_ads_query(
    spec: DimensionQuerySpec,
    dialect: SqlDialect,
    *,
    start_date: str,
    end_date: str,
    row_cap: int,
    table_filters: Sequence[TableFilter] = (),
) -> SqlQuery:
    """Spend at (dimension value, network, campaign, adset, ad) grain.

    Rolled up in Python afterwards so each dimension value keeps the full set
    of tracking ids behind it.
    """
    params = SqlParams(dialect)
    current = resolve_dimension(ADS_DIMENSIONS, spec.current_dimension)
    filter_dims = [f.dimension for f in table_filters]
    joins = collect_joins([*spec.dimensions[: spec.depth + 1], *filter_dims], ADS_DIMENSIONS, ADS_JOINS)

    where = [f"m.date BETWEEN {params.bind(start_date)} AND {params.bind(end_date)}"]
    where.extend(build_parent_filters(spec, ADS_DIMENSIONS, params))
    where.extend(build_table_filters(table_filters, ADS_DIMENSIONS, params))

    grain = [current.column, "m.network", "m.campaign_id", "m.adset_id", "m.ad_id"]
    sql = "\n".join(
        [
            "SELECT",
            f"  {current.column} AS dimension_value,",
            "  m.network AS network,",
            "  m.campaign_id AS campaign_id,",
            "  m.adset_id AS adset_id,",
            "  m.ad_id AS ad_id,",
            "  SUM(m.cost) AS cost,",
            "  SUM(m.clicks) AS clicks,",
            "  SUM(m.impressions) AS impressions,",
            "  SUM(m.conversions) AS conversions",
            "FROM merged_ads_spending m",
            *joins,
            "WHERE " + "\n  AND ".join(where),
            "GROUP BY " + ", ".join(grain),
            f"LIMIT {params.bind(row_cap)}",
        ]
    )
    return SqlQuery(sql=sql, params=params.values)


def rollup_spend_rows(rows: Iterable[dict[str, Any]], *, by_date: bool = False) -> list[SpendDimensionRow]:
    agg: dict[str | None, dict[str, Any]] = {}

    for r in rows:
        raw = r.get("dimension_value")
        value = None if is_blank(raw) else str(raw)

        if value not in agg:
            agg[value] = {
                "campaign_ids": set(),
                "adset_ids": set(),
                "ad_ids": set(),
                "networks": set(),
                "cost": 0.0,
                "clicks": 0,
                "impressions": 0,
                "conversions": 0.0,
            }
        entry = agg[value]

        for src, dst in (("campaign_id", "campaign_ids"), ("adset_id", "adset_ids"), ("ad_id", "ad_ids")):
            v = r.get(src)
            if is_present(v):
                entry[dst].add(str(v))
        if r.get("network"):
            entry["networks"].add(str(r["network"]))

        entry["cost"] += to_float(r.get("cost"))
        entry["clicks"] += to_int(r.get("clicks"))
        entry["impressions"] += to_int(r.get("impressions"))
        entry["conversions"] += to_float(r.get("conversions"))

    out: list[SpendDimensionRow] = []
    for value, entry in agg.items():
        dates = None
        if by_date and value is not None:
            dates = frozenset({parse_iso_date(value)})
        out.append(
            SpendDimensionRow(
                dimension_value=value,
                campaign_ids=frozenset(entry["campaign_ids"]),
                adset_ids=frozenset(entry["adset_ids"]),
                ad_ids=frozenset(entry["ad_ids"]),
                networks=frozenset(entry["networks"]),
                cost=entry["cost"],
                clicks=entry["clicks"],
                impressions=entry["impressions"],
                conversions=entry["conversions"],
                dates=dates,
            )
        )
    return out
