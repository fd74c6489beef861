"""Tiered tracking-id index.

Each conversion row lands in exactly one tier depending on which of
campaign / adset / ad ids it carries, so one lookup pass over the tiers can
never count a row twice.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Generic, Protocol, TypeVar

from attributionpivot.util import is_present


class TrackedRow(Protocol):
    source: str | None
    campaign_id: str | None
    adset_id: str | None
    ad_id: str | None


T = TypeVar("T", bound=TrackedRow)

KEY_SEP = "|"


@dataclass
class TieredIndex(Generic[T]):
    full: dict[str, list[T]] = field(default_factory=dict)
    campaign_adset: dict[str, list[T]] = field(default_factory=dict)
    campaign_only: dict[str, list[T]] = field(default_factory=dict)
    source_only: list[T] = field(default_factory=list)

    def __len__(self) -> int:
        return (
            sum(len(v) for v in self.full.values())
            + sum(len(v) for v in self.campaign_adset.values())
            + sum(len(v) for v in self.campaign_only.values())
            + len(self.source_only)
        )

    def tier_sizes(self) -> dict[str, int]:
        return {
            "full": sum(len(v) for v in self.full.values()),
            "campaign_adset": sum(len(v) for v in self.campaign_adset.values()),
            "campaign_only": sum(len(v) for v in self.campaign_only.values()),
            "source_only": len(self.source_only),
        }


def tracking_key(*parts: str) -> str:
    return KEY_SEP.join(parts)


def classify_tier(row: TrackedRow) -> str:
    has_campaign = is_present(row.campaign_id)
    has_adset = is_present(row.adset_id)
    has_ad = is_present(row.ad_id)
    if has_campaign and has_adset and has_ad:
        return "full"
    if has_campaign and has_adset:
        return "campaign_adset"
    if has_campaign:
        return "campaign_only"
    return "source_only"


def build_tiered_index(rows: Iterable[T]) -> TieredIndex[T]:
    index: TieredIndex[T] = TieredIndex()
    for row in rows:
        tier = classify_tier(row)
        if tier == "full":
            key = tracking_key(str(row.campaign_id), str(row.adset_id), str(row.ad_id))
            index.full.setdefault(key, []).append(row)
        elif tier == "campaign_adset":
            key = tracking_key(str(row.campaign_id), str(row.adset_id))
            index.campaign_adset.setdefault(key, []).append(row)
        elif tier == "campaign_only":
            index.campaign_only.setdefault(str(row.campaign_id), []).append(row)
        else:
            index.source_only.append(row)
    return index


def iter_candidates(
    index: TieredIndex[T],
    campaign_ids: Iterable[str],
    adset_ids: Iterable[str],
    ad_ids: Iterable[str],
) -> Iterator[T]:
    """Yield every row of `index` reachable from the given id sets, tier by tier."""
    campaigns = sorted({c for c in campaign_ids if is_present(c)})
    adsets = sorted({a for a in adset_ids if is_present(a)})
    ads = sorted({a for a in ad_ids if is_present(a)})

    # Id sets are de-duplicated above, so every composed key is distinct.
    for c in campaigns:
        for s in adsets:
            for a in ads:
                yield from index.full.get(tracking_key(c, s, a), ())

    for c in campaigns:
        for s in adsets:
            yield from index.campaign_adset.get(tracking_key(c, s), ())

    for c in campaigns:
        yield from index.campaign_only.get(c, ())

    yield from index.source_only
