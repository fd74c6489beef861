from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from attributionpivot.dimensions import UNKNOWN
from attributionpivot.periods import TimePeriodColumn
from attributionpivot.planner import DimensionQuerySpec
from attributionpivot.util import is_blank, safe_div, to_int


KEY_SEPARATOR = "::"


@dataclass(frozen=True)
class RateMetric:
    rate: float
    numerator: int
    denominator: int

    def to_dict(self) -> dict[str, Any]:
        return {"rate": self.rate, "numerator": self.numerator, "denominator": self.denominator}


def rate_metric(numerator: int, denominator: int) -> RateMetric:
    return RateMetric(rate=safe_div(numerator, denominator), numerator=numerator, denominator=denominator)


@dataclass(frozen=True)
class PivotRow:
    key: str
    attribute: str
    depth: int
    has_children: bool
    metrics: Mapping[str, RateMetric]
    totals: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "key": self.key,
            "attribute": self.attribute,
            "depth": self.depth,
            "has_children": self.has_children,
            "metrics": {k: m.to_dict() for k, m in self.metrics.items()},
        }
        if self.totals is not None:
            out["totals"] = dict(self.totals)
        return out


def build_row_key(spec: DimensionQuerySpec, value: str) -> str:
    parts = [spec.parent_filters.get(dim) or UNKNOWN for dim in spec.ancestors]
    parts.append(value)
    return KEY_SEPARATOR.join(parts)


def meets_min_sample(metrics: Mapping[str, RateMetric], min_sample: int) -> bool:
    if min_sample <= 0:
        return True
    return any(m.denominator >= min_sample for m in metrics.values())


def build_pivot_row(
    spec: DimensionQuerySpec,
    attribute: str,
    metrics: Mapping[str, RateMetric],
    *,
    totals: Mapping[str, Any] | None = None,
) -> PivotRow:
    return PivotRow(
        key=build_row_key(spec, attribute),
        attribute=attribute,
        depth=spec.depth,
        has_children=spec.has_children,
        metrics=dict(metrics),
        totals=totals,
    )


def transform_rate_rows(
    rows: Iterable[Mapping[str, Any]],
    spec: DimensionQuerySpec,
    periods: Sequence[TimePeriodColumn],
    *,
    min_sample: int,
) -> list[PivotRow]:
    """Fold `<period>_trials` / `<period>_approved` count columns into pivot rows.

    Rows without a usable label are dropped, then values whose every period
    falls below `min_sample` trials are suppressed.
    """
    out: list[PivotRow] = []
    for r in rows:
        raw = r.get("dimension_value")
        if is_blank(raw):
            continue
        metrics = {
            p.key: rate_metric(to_int(r.get(f"{p.key}_approved")), to_int(r.get(f"{p.key}_trials")))
            for p in periods
        }
        if not meets_min_sample(metrics, min_sample):
            continue
        out.append(build_pivot_row(spec, str(raw), metrics))
    return out
