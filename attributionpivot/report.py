"""Pivot engine entry points.

Every function here returns a response dict and never raises: validation
problems and data-source failures both come back as ``success: False``.
Fetches for one request run concurrently; if any of them fails nothing is
merged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any

from attributionpivot.config import fetch_row_limit, min_sample_threshold
from attributionpivot.db import DataSource, SqlQuery
from attributionpivot.dimensions import (
    ADS_DIMENSIONS,
    CRM_DIMENSIONS,
    LEGACY_APPROVAL,
    LEGACY_MIN_SAMPLE,
    RATE_MODES,
    TRACKING_DIMENSION_IDS,
    UNKNOWN,
    RateModeConfig,
)
from attributionpivot.errors import (
    MARIADB_ERRORS,
    POSTGRES_ERRORS,
    SQLITE_ERRORS,
    DataSourceError,
    ErrorClassifierConfig,
    PivotValidationError,
    classify_database_error,
    describe_query,
)
from attributionpivot.periods import PERIOD_TYPES, TimePeriodColumn, generate_time_periods
from attributionpivot.planner import (
    DEFAULT_PAGE_SIZE,
    DimensionQuerySpec,
    TableFilter,
    build_rate_count_query,
    build_rate_detail_queries,
    clamp_limit,
    clamp_page_size,
    validate_spec,
)
from attributionpivot.rates import PivotRow, build_pivot_row, rate_metric, transform_rate_rows
from attributionpivot.tools.ads import SpendDimensionRow, build_ads_query, rollup_spend_rows
from attributionpivot.tools.attribution import (
    AggregatedMetrics,
    MatchTotals,
    aggregate_metrics,
    build_source_indexes,
    build_tiered_indexes,
    build_unknown_row,
    collect_attributed_rows,
    collect_source_country_rows,
    collect_source_rows,
    collect_source_total_rows,
    sum_rows,
    totals_by_period,
)
from attributionpivot.tools.conversions import ConversionRow, build_conversion_queries, conversion_row_from_db
from attributionpivot.util import parse_iso_date, to_int


logger = logging.getLogger(__name__)

SORT_DIRECTIONS = ("asc", "desc")
SORTABLE_METRICS = (
    "dimension_value",
    "cost",
    "clicks",
    "impressions",
    "conversions",
    "ctr_percent",
    "cpc",
    "cpm",
    "conversion_rate",
    "subscriptions",
    "customers",
    "upsells",
    "upsells_approved",
    "ots",
    "ots_approved",
    "trials",
    "trials_approved",
    "on_hold",
    "approval_rate",
    "ots_approval_rate",
    "upsell_approval_rate",
    "real_cpa",
)


@dataclass(frozen=True)
class PivotRequest:
    start_date: str
    end_date: str
    dimensions: tuple[str, ...]
    depth: int = 0
    parent_filters: Mapping[str, str] = field(default_factory=dict)
    rate_mode: str = "approval"
    period_type: str = "monthly"

    def to_spec(self) -> DimensionQuerySpec:
        return DimensionQuerySpec(
            dimensions=tuple(self.dimensions),
            depth=self.depth,
            parent_filters=dict(self.parent_filters),
            rate_mode=self.rate_mode,
        )


@dataclass(frozen=True)
class MarketingRequest(PivotRequest):
    table_filters: tuple[TableFilter, ...] = ()
    sort_by: str = "cost"
    sort_direction: str = "desc"
    limit: int | None = None


@dataclass(frozen=True)
class DetailRequest:
    start_date: str
    end_date: str
    dimensions: tuple[str, ...]
    depth: int
    filters: Mapping[str, str]
    rate_mode: str = "approval"
    metric: str = "trials"
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def to_spec(self) -> DimensionQuerySpec:
        return DimensionQuerySpec(
            dimensions=tuple(self.dimensions),
            depth=self.depth,
            parent_filters=dict(self.filters),
            rate_mode=self.rate_mode,
        )


def failure(error: str) -> dict[str, Any]:
    return {"success": False, "data": [], "period_columns": [], "error": error}


def success(rows: Sequence[PivotRow], periods: Sequence[TimePeriodColumn]) -> dict[str, Any]:
    return {
        "success": True,
        "data": [r.to_dict() for r in rows],
        "period_columns": [p.to_dict() for p in periods],
    }


def resolve_rate_mode(name: str) -> RateModeConfig:
    mode = RATE_MODES.get(name)
    if mode is None:
        raise PivotValidationError(f"rate_mode must be one of: {', '.join(RATE_MODES)}")
    return mode


def _parse_date(value: str, name: str) -> date:
    try:
        return parse_iso_date(value)
    except (TypeError, ValueError) as exc:
        raise PivotValidationError(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}") from exc


def build_periods(request: PivotRequest, *, today: date | None = None) -> list[TimePeriodColumn]:
    if request.period_type not in PERIOD_TYPES:
        raise PivotValidationError(f"period_type must be one of: {', '.join(PERIOD_TYPES)}")
    start = _parse_date(request.start_date, "start_date")
    end = _parse_date(request.end_date, "end_date")
    periods = generate_time_periods(start, end, request.period_type, today=today)
    if not periods:
        raise PivotValidationError("Date range produced no periods; end_date must not be before start_date")
    return periods


def _classifier_for(source: DataSource) -> ErrorClassifierConfig:
    name = getattr(getattr(source, "dialect", None), "name", "")
    return {"mariadb": MARIADB_ERRORS, "postgres": POSTGRES_ERRORS}.get(name, SQLITE_ERRORS)


async def fetch_rows(source: DataSource, q: SqlQuery, label: str) -> list[dict[str, Any]]:
    try:
        rows = await asyncio.to_thread(source.execute, q.sql, q.params)
    except Exception as exc:
        logger.error("%s query failed: %s | %s", label, exc, describe_query(q.sql, q.params))
        raise classify_database_error(exc, _classifier_for(source)) from exc
    logger.debug("%s query returned %d rows", label, len(rows))
    return rows


async def fetch_all(jobs: Mapping[str, tuple[DataSource, SqlQuery]]) -> dict[str, list[dict[str, Any]]]:
    labels = list(jobs)
    results = await asyncio.gather(
        *(fetch_rows(src, q, label) for label, (src, q) in jobs.items()),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, BaseException)]
    if failures:
        raise next((e for e in failures if isinstance(e, DataSourceError)), failures[0])
    return dict(zip(labels, results))


# Rate views (CRM only)


async def _rate_pivot(
    request: PivotRequest,
    crm: DataSource,
    *,
    mode_for: Callable[[str], RateModeConfig],
    min_sample: int,
    row_cap: int | None,
    today: date | None,
) -> dict[str, Any]:
    try:
        spec = request.to_spec()
        validate_spec(spec, CRM_DIMENSIONS)
        mode = mode_for(request.rate_mode)
        periods = build_periods(request, today=today)
        q = build_rate_count_query(
            spec, periods, mode, CRM_DIMENSIONS, crm.dialect, row_cap=row_cap or fetch_row_limit()
        )
        rows = await fetch_rows(crm, q, "crm")
    except (PivotValidationError, DataSourceError) as exc:
        return failure(str(exc))

    data = transform_rate_rows(rows, spec, periods, min_sample=min_sample)
    return success(data, periods)


async def get_validation_rate_data(
    request: PivotRequest,
    crm: DataSource,
    *,
    min_sample: int | None = None,
    row_cap: int | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Approval, pay or buy rate per dimension value and period."""
    return await _rate_pivot(
        request,
        crm,
        mode_for=resolve_rate_mode,
        min_sample=min_sample_threshold() if min_sample is None else min_sample,
        row_cap=row_cap,
        today=today,
    )


def _legacy_mode(name: str) -> RateModeConfig:
    if name != "approval":
        raise PivotValidationError("The approval rate report only supports rate_mode 'approval'")
    return LEGACY_APPROVAL


async def get_approval_rate_data(
    request: PivotRequest,
    crm: DataSource,
    *,
    row_cap: int | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    return await _rate_pivot(
        request,
        crm,
        mode_for=_legacy_mode,
        min_sample=LEGACY_MIN_SAMPLE,
        row_cap=row_cap,
        today=today,
    )


async def get_rate_details(request: DetailRequest, crm: DataSource, *, legacy: bool = False) -> dict[str, Any]:
    """Records behind one rate cell, paginated, with the total the cell was computed from."""
    try:
        spec = request.to_spec()
        validate_spec(spec, CRM_DIMENSIONS)
        mode = _legacy_mode(request.rate_mode) if legacy else resolve_rate_mode(request.rate_mode)
        _parse_date(request.start_date, "start_date")
        _parse_date(request.end_date, "end_date")
        pair = build_rate_detail_queries(
            spec,
            mode,
            CRM_DIMENSIONS,
            crm.dialect,
            start_date=request.start_date,
            end_date=request.end_date,
            metric=request.metric,
            page=request.page,
            page_size=request.page_size,
        )
        results = await fetch_all({"listing": (crm, pair.listing), "count": (crm, pair.count)})
    except (PivotValidationError, DataSourceError) as exc:
        return {"success": False, "data": [], "total": 0, "error": str(exc)}

    count_rows = results["count"]
    total = to_int(count_rows[0].get("total")) if count_rows else 0
    return {
        "success": True,
        "data": results["listing"],
        "total": total,
        "page": request.page,
        "page_size": clamp_page_size(request.page_size),
    }


# Marketing report (ads + CRM)


def matching_strategy(spec: DimensionQuerySpec) -> str:
    current = spec.current_dimension
    if current == "network":
        country = spec.parent_filters.get("classified_country")
        if country and country != UNKNOWN:
            return "source_country"
        return "source"
    if current == "classified_country":
        return "source_country"
    if current in TRACKING_DIMENSION_IDS:
        return "tracking"
    return "tracking_with_unknown"


def _conversion_rows(results: Mapping[str, list[dict[str, Any]]], prefix: str) -> dict[str, list[ConversionRow]]:
    return {
        name: [conversion_row_from_db(r) for r in results[f"{prefix}{name}"]]
        for name in ("subscriptions", "trials", "ots")
    }


def _period_rates(by_period: Mapping[str, MatchTotals]) -> dict[str, Any]:
    return {key: rate_metric(t.trials_approved, t.subscriptions) for key, t in by_period.items()}


def _sort_rows(rows: list[PivotRow], sort_by: str, direction: str) -> list[PivotRow]:
    def sort_key(row: PivotRow) -> Any:
        value = (row.totals or {}).get(sort_by)
        if sort_by == "dimension_value":
            return str(value or "").lower()
        return value or 0

    return sorted(rows, key=sort_key, reverse=direction == "desc")


async def get_marketing_data(
    request: MarketingRequest,
    ads: DataSource,
    crm: DataSource,
    *,
    row_cap: int | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """Spend rows for the current drill level joined to CRM conversions."""
    try:
        spec = request.to_spec()
        validate_spec(spec, ADS_DIMENSIONS)
        mode = resolve_rate_mode(request.rate_mode)
        periods = build_periods(request, today=today)
        if request.sort_by not in SORTABLE_METRICS:
            raise PivotValidationError(f"sort_by must be one of: {', '.join(SORTABLE_METRICS)}")
        if request.sort_direction not in SORT_DIRECTIONS:
            raise PivotValidationError("sort_direction must be 'asc' or 'desc'")

        cap = row_cap or fetch_row_limit()
        strategy = matching_strategy(spec)
        window = {"start_date": request.start_date, "end_date": request.end_date}

        jobs: dict[str, tuple[DataSource, SqlQuery]] = {
            "ads": (
                ads,
                build_ads_query(
                    spec,
                    ads.dialect,
                    row_cap=cap,
                    table_filters=request.table_filters,
                    **window,
                ),
            )
        }
        grain = {"source": "source", "source_country": "source_country"}.get(strategy, "tracking")
        for name, q in build_conversion_queries(mode, crm.dialect, grain=grain, row_cap=cap, **window).items():
            jobs[f"crm_{name}"] = (crm, q)
        if strategy == "tracking_with_unknown":
            for name, q in build_conversion_queries(mode, crm.dialect, grain="source", row_cap=cap, **window).items():
                jobs[f"crm_source_{name}"] = (crm, q)

        results = await fetch_all(jobs)
    except (PivotValidationError, DataSourceError) as exc:
        return failure(str(exc))

    spend_rows = rollup_spend_rows(results["ads"], by_date=spec.current_dimension == "date")
    conversions = _conversion_rows(results, "crm_")

    collect: Callable[[SpendDimensionRow], list[ConversionRow]]
    if strategy == "source":
        source_indexes = build_source_indexes(**conversions)
        collect = lambda row: collect_source_rows(row, source_indexes)  # noqa: E731
    elif strategy == "source_country":
        country_indexes = build_source_indexes(**conversions, by_country=True)
        country_code = spec.parent_filters.get("classified_country") if spec.current_dimension == "network" else None
        collect = lambda row: collect_source_country_rows(row, country_indexes, country_code)  # noqa: E731
    else:
        tiered = build_tiered_indexes(**conversions)
        collect = lambda row: collect_attributed_rows(row, tiered)  # noqa: E731

    entries: list[tuple[AggregatedMetrics, dict[str, MatchTotals]]] = []
    attributed: list[ConversionRow] = []
    for spend_row in spend_rows:
        rows = collect(spend_row)
        attributed.extend(rows)
        entries.append((aggregate_metrics(spend_row, rows), totals_by_period(rows, periods)))

    if strategy == "tracking_with_unknown":
        networks = {n for row in spend_rows for n in row.networks}
        source_rows = collect_source_total_rows(
            build_source_indexes(**_conversion_rows(results, "crm_source_")), networks
        )
        entries = _with_unknown_row(entries, attributed, source_rows, periods)

    data = [
        build_pivot_row(
            spec,
            metrics.dimension_value,
            _period_rates(by_period),
            totals=metrics.to_dict(),
        )
        for metrics, by_period in entries
    ]
    logger.debug("marketing %s: %d spend rows, strategy=%s", spec.current_dimension, len(spend_rows), strategy)
    data = _sort_rows(data, request.sort_by, request.sort_direction)
    if request.limit is not None:
        data = data[: clamp_limit(request.limit, cap)]
    return success(data, periods)


def _with_unknown_row(
    entries: list[tuple[AggregatedMetrics, dict[str, MatchTotals]]],
    attributed: Sequence[ConversionRow],
    source_rows: Sequence[ConversionRow],
    periods: Sequence[TimePeriodColumn],
) -> list[tuple[AggregatedMetrics, dict[str, MatchTotals]]]:
    """Add CRM activity no spend row claimed, folding it into an existing "Unknown" row if there is one."""
    unknown = build_unknown_row(sum_rows(source_rows), sum_rows(attributed))
    if unknown is None:
        return entries

    source_by_period = totals_by_period(source_rows, periods)
    attributed_by_period = totals_by_period(attributed, periods)
    gap_by_period = {k: source_by_period[k].residual(attributed_by_period[k]) for k in source_by_period}

    out: list[tuple[AggregatedMetrics, dict[str, MatchTotals]]] = []
    folded = False
    for metrics, by_period in entries:
        if metrics.dimension_value == UNKNOWN:
            metrics = replace(metrics, totals=metrics.totals.plus(unknown.totals))
            by_period = {k: t.plus(gap_by_period[k]) for k, t in by_period.items()}
            folded = True
        out.append((metrics, by_period))

    if not folded:
        out.append((unknown, gap_by_period))
    return out
