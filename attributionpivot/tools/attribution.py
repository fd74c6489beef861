"""Cross-source attribution of CRM conversions to ad spend rows.

Spend and CRM data share no key. Rows are matched through tracking ids where
the CRM row carries them (tiered index) and through the network -> source
alias table otherwise. A coarse-tier CRM row legitimately matches every spend
row under its campaign.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, fields
from typing import Any, Generic, TypeVar

from attributionpivot.dimensions import UNKNOWN
from attributionpivot.lookups import country_to_crm, match_network_to_source, normalize_source, sources_for_networks
from attributionpivot.periods import TimePeriodColumn, find_period
from attributionpivot.tools.ads import SpendDimensionRow
from attributionpivot.tools.conversions import ConversionRow
from attributionpivot.tools.tracking import TieredIndex, build_tiered_index, iter_candidates
from attributionpivot.util import round_money, safe_div


R = TypeVar("R")


@dataclass
class MatchTotals:
    subscriptions: int = 0
    customers: int = 0
    upsells: int = 0
    upsells_approved: int = 0
    ots: int = 0
    ots_approved: int = 0
    trials: int = 0
    trials_approved: int = 0
    on_hold: int = 0

    def add(self, row: ConversionRow) -> None:
        self.subscriptions += row.subscription_count
        self.customers += row.customer_count
        self.upsells += row.upsell_count
        self.upsells_approved += row.upsells_approved_count
        self.ots += row.ots_count
        self.ots_approved += row.ots_approved_count
        self.trials += row.trial_count
        self.trials_approved += row.trials_approved_count
        self.on_hold += row.on_hold_count

    def plus(self, other: MatchTotals) -> MatchTotals:
        return MatchTotals(**{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)})

    def residual(self, matched: MatchTotals) -> MatchTotals:
        return MatchTotals(**{f.name: max(0, getattr(self, f.name) - getattr(matched, f.name)) for f in fields(self)})

    @property
    def approval_rate(self) -> float:
        return safe_div(self.trials_approved, self.subscriptions)

    @property
    def ots_approval_rate(self) -> float:
        return safe_div(self.ots_approved, self.ots)

    @property
    def upsell_approval_rate(self) -> float:
        return safe_div(self.upsells_approved, self.upsells)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def sum_rows(rows: Iterable[ConversionRow]) -> MatchTotals:
    totals = MatchTotals()
    for row in rows:
        totals.add(row)
    return totals


@dataclass(frozen=True)
class AggregatedMetrics:
    dimension_value: str
    cost: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0
    totals: MatchTotals = field(default_factory=MatchTotals)

    @property
    def ctr_percent(self) -> float:
        # A fraction of impressions, not scaled to 0-100.
        return round(safe_div(self.clicks, self.impressions), 4)

    @property
    def cpc(self) -> float:
        return safe_div(self.cost, self.clicks)

    @property
    def cpm(self) -> float:
        return safe_div(self.cost, self.impressions) * 1000.0

    @property
    def conversion_rate(self) -> float:
        return round(safe_div(self.conversions, self.impressions), 6)

    @property
    def approval_rate(self) -> float:
        return self.totals.approval_rate

    @property
    def ots_approval_rate(self) -> float:
        return self.totals.ots_approval_rate

    @property
    def upsell_approval_rate(self) -> float:
        return self.totals.upsell_approval_rate

    @property
    def real_cpa(self) -> float:
        return safe_div(self.cost, self.totals.trials_approved)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension_value": self.dimension_value,
            "cost": round_money(self.cost),
            "clicks": self.clicks,
            "impressions": self.impressions,
            "conversions": self.conversions,
            "ctr_percent": self.ctr_percent,
            "cpc": round_money(self.cpc),
            "cpm": round_money(self.cpm),
            "conversion_rate": self.conversion_rate,
            **self.totals.to_dict(),
            "approval_rate": self.approval_rate,
            "ots_approval_rate": self.ots_approval_rate,
            "upsell_approval_rate": self.upsell_approval_rate,
            "real_cpa": round_money(self.real_cpa),
        }


def aggregate_metrics(spend_row: SpendDimensionRow, rows: Iterable[ConversionRow]) -> AggregatedMetrics:
    return AggregatedMetrics(
        dimension_value=spend_row.label,
        cost=spend_row.cost,
        clicks=spend_row.clicks,
        impressions=spend_row.impressions,
        conversions=spend_row.conversions,
        totals=sum_rows(rows),
    )


@dataclass(frozen=True)
class CrmIndexes(Generic[R]):
    """One lookup structure per conversion variant (subscriptions, trials, OTS)."""

    subscriptions: R
    trials: R
    ots: R

    def each(self) -> tuple[R, R, R]:
        return (self.subscriptions, self.trials, self.ots)


def build_tiered_indexes(
    subscriptions: Iterable[ConversionRow],
    trials: Iterable[ConversionRow],
    ots: Iterable[ConversionRow],
) -> CrmIndexes[TieredIndex[ConversionRow]]:
    return CrmIndexes(
        subscriptions=build_tiered_index(subscriptions),
        trials=build_tiered_index(trials),
        ots=build_tiered_index(ots),
    )


def _in_scope(spend_row: SpendDimensionRow, row: ConversionRow) -> bool:
    if spend_row.dates is None:
        return True
    return row.date in spend_row.dates


def collect_attributed_rows(
    spend_row: SpendDimensionRow,
    indexes: CrmIndexes[TieredIndex[ConversionRow]],
) -> list[ConversionRow]:
    """CRM rows attributed to one spend row through the tracking-id tiers."""
    accepted: list[ConversionRow] = []
    for index in indexes.each():
        for row in iter_candidates(index, spend_row.campaign_ids, spend_row.adset_ids, spend_row.ad_ids):
            if not any(match_network_to_source(n, row.source) for n in spend_row.networks):
                continue
            if _in_scope(spend_row, row):
                accepted.append(row)
    return accepted


def match_ads_to_crm(
    spend_row: SpendDimensionRow,
    indexes: CrmIndexes[TieredIndex[ConversionRow]],
) -> AggregatedMetrics:
    return aggregate_metrics(spend_row, collect_attributed_rows(spend_row, indexes))


# Source-level matching


SourceIndex = dict[str, list[ConversionRow]]


def build_source_index(rows: Iterable[ConversionRow]) -> SourceIndex:
    index: SourceIndex = {}
    for row in rows:
        index.setdefault(normalize_source(row.source), []).append(row)
    return index


def source_country_key(country: str | None, source: str | None) -> str:
    return f"{(country or '').strip().lower()}|{normalize_source(source)}"


def build_source_country_index(rows: Iterable[ConversionRow]) -> SourceIndex:
    index: SourceIndex = {}
    for row in rows:
        index.setdefault(source_country_key(row.country, row.source), []).append(row)
    return index


def build_source_indexes(
    subscriptions: Iterable[ConversionRow],
    trials: Iterable[ConversionRow],
    ots: Iterable[ConversionRow],
    *,
    by_country: bool = False,
) -> CrmIndexes[SourceIndex]:
    build = build_source_country_index if by_country else build_source_index
    return CrmIndexes(subscriptions=build(subscriptions), trials=build(trials), ots=build(ots))


def _collect_by_keys(
    spend_row: SpendDimensionRow | None,
    indexes: CrmIndexes[SourceIndex],
    keys: Sequence[str],
) -> list[ConversionRow]:
    rows: list[ConversionRow] = []
    for index in indexes.each():
        for key in keys:
            for row in index.get(key, ()):
                if spend_row is None or _in_scope(spend_row, row):
                    rows.append(row)
    return rows


def collect_source_rows(spend_row: SpendDimensionRow, indexes: CrmIndexes[SourceIndex]) -> list[ConversionRow]:
    # sources_for_networks de-duplicates, so two networks aliasing one source count it once.
    return _collect_by_keys(spend_row, indexes, sources_for_networks(spend_row.networks))


def match_ads_to_crm_by_source(spend_row: SpendDimensionRow, indexes: CrmIndexes[SourceIndex]) -> AggregatedMetrics:
    return aggregate_metrics(spend_row, collect_source_rows(spend_row, indexes))


def collect_source_country_rows(
    spend_row: SpendDimensionRow,
    indexes: CrmIndexes[SourceIndex],
    country_code: str | None = None,
) -> list[ConversionRow]:
    """Rows for the spend row's networks in one country.

    The country comes from `country_code` when given (an ancestor filter),
    otherwise from the spend row's own dimension value.
    """
    crm_country = country_to_crm(country_code or spend_row.dimension_value)
    keys = [source_country_key(crm_country, src) for src in sources_for_networks(spend_row.networks)]
    return _collect_by_keys(spend_row, indexes, keys)


def match_ads_to_crm_by_source_country(
    spend_row: SpendDimensionRow,
    indexes: CrmIndexes[SourceIndex],
    country_code: str | None = None,
) -> AggregatedMetrics:
    return aggregate_metrics(spend_row, collect_source_country_rows(spend_row, indexes, country_code))


def collect_source_total_rows(indexes: CrmIndexes[SourceIndex], networks: Iterable[str]) -> list[ConversionRow]:
    return _collect_by_keys(None, indexes, sources_for_networks(networks))


def compute_source_totals(indexes: CrmIndexes[SourceIndex], networks: Iterable[str]) -> MatchTotals:
    return sum_rows(collect_source_total_rows(indexes, networks))


def has_gap(totals: MatchTotals) -> bool:
    return totals.subscriptions > 0 or totals.customers > 0 or totals.trials > 0 or totals.ots > 0


def build_unknown_row(source_totals: MatchTotals, matched: MatchTotals) -> AggregatedMetrics | None:
    """Residual CRM activity the tracking-id path could not place, as a zero-cost row."""
    gap = source_totals.residual(matched)
    if not has_gap(gap):
        return None
    return AggregatedMetrics(dimension_value=UNKNOWN, totals=gap)


def totals_by_period(rows: Iterable[ConversionRow], periods: Sequence[TimePeriodColumn]) -> dict[str, MatchTotals]:
    out = {p.key: MatchTotals() for p in periods}
    for row in rows:
        if row.date is None:
            continue
        period = find_period(periods, row.date)
        if period is not None:
            out[period.key].add(row)
    return out
