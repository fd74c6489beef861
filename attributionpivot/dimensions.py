"""Dimension registries and rate-mode definitions.

Every dimension maps to one DimensionConfig; every rate mode maps to one
RateModeConfig. The aggregate count queries and the record listings both
read these objects, so a cell total and its detail listing agree.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum


UNKNOWN = "Unknown"


class JoinDirection(str, Enum):
    INCLUSIVE = "LEFT JOIN"
    EXCLUSIVE = "INNER JOIN"


@dataclass(frozen=True)
class DimensionConfig:
    column: str
    null_check: str
    joins: tuple[str, ...] = ()
    join_direction: JoinDirection = JoinDirection.INCLUSIVE


def _text_dimension(column: str, *joins: str) -> DimensionConfig:
    return DimensionConfig(column=column, null_check=f"({column} IS NULL OR {column} = '')", joins=tuple(joins))


def _tracking_dimension(column: str) -> DimensionConfig:
    return DimensionConfig(
        column=column,
        null_check=f"({column} IS NULL OR {column} = '' OR {column} = 'null')",
    )


# CRM join catalog, keyed by the names dimensions and rate modes refer to.
CRM_JOINS: dict[str, str] = {
    "customer": "customer c ON c.id = s.customer_id",
    "source": "source sr ON sr.id = s.source_id",
    "source_invoice": "source sr ON sr.id = i.source_id",
    "invoice_product": "invoice_product ip ON ip.invoice_id = i.id",
    "product": "product p ON p.id = ip.product_id",
    "product_group": "product_group pg ON pg.id = p.product_group_id",
}

GEOGRAPHY_DIMENSIONS: dict[str, DimensionConfig] = {
    "country": _text_dimension("c.country", "customer"),
    "product_name": _text_dimension("pg.group_name", "invoice_product", "product", "product_group"),
    "product": _text_dimension("p.product_name", "invoice_product", "product"),
    "source": _text_dimension("sr.source", "source"),
}

TRACKING_DIMENSIONS: dict[str, DimensionConfig] = {
    "campaign": _tracking_dimension("s.tracking_id_4"),
    "adset": _tracking_dimension("s.tracking_id_2"),
    "ad": _tracking_dimension("s.tracking_id"),
    "date": DimensionConfig(column="DATE(s.date_create)", null_check="s.date_create IS NULL"),
}

CRM_DIMENSIONS: dict[str, DimensionConfig] = {**GEOGRAPHY_DIMENSIONS, **TRACKING_DIMENSIONS}

ADS_JOINS: dict[str, str] = {
    "campaign_classification": "app_campaign_classifications cc ON cc.campaign_id = m.campaign_id AND cc.is_ignored = false",
    "classified_product": "app_products ap ON ap.id = cc.product_id",
}

ADS_DIMENSIONS: dict[str, DimensionConfig] = {
    "network": _text_dimension("m.network"),
    "campaign": _text_dimension("m.campaign_name"),
    "adset": _text_dimension("m.adset_name"),
    "ad": _text_dimension("m.ad_name"),
    "date": DimensionConfig(column="m.date", null_check="m.date IS NULL"),
    "classified_product": _text_dimension("ap.name", "campaign_classification", "classified_product"),
    "classified_country": _text_dimension("cc.country_code", "campaign_classification"),
}

TRACKING_DIMENSION_IDS = frozenset({"campaign", "adset", "ad"})

UPSELL_EXCLUSION = "(i.tag IS NULL OR i.tag NOT LIKE '%parent-sub-id=%')"
TRIAL_RECORD_FILTER = "i.type = 1 AND i.deleted = 0"
OTS_RECORD_FILTER = "i.type = 3 AND i.deleted = 0"


@dataclass(frozen=True)
class RateModeConfig:
    name: str
    date_field: str
    matched_condition: str
    record_filter: str = TRIAL_RECORD_FILTER
    invoice_join: JoinDirection = JoinDirection.EXCLUSIVE
    status_join: str | None = None
    exclusions: tuple[str, ...] = (UPSELL_EXCLUSION,)
    join_overrides: Mapping[str, str] = field(default_factory=dict)


PROCESSED_JOIN = "invoice_proccessed ipr ON ipr.invoice_id = i.id"

RATE_MODES: dict[str, RateModeConfig] = {
    "approval": RateModeConfig(
        name="approval",
        date_field="s.date_create",
        matched_condition="i.is_marked = 1",
    ),
    "pay": RateModeConfig(
        name="pay",
        date_field="i.invoice_date",
        matched_condition="ipr.date_paid IS NOT NULL",
        status_join=PROCESSED_JOIN,
    ),
    "buy": RateModeConfig(
        name="buy",
        date_field="i.invoice_date",
        matched_condition="ipr.date_bought IS NOT NULL",
        status_join=PROCESSED_JOIN,
    ),
}

# Older approval report: keeps subscriptions without a trial invoice and reads
# the source from the invoice.
LEGACY_APPROVAL = RateModeConfig(
    name="approval",
    date_field="s.date_create",
    matched_condition="i.is_marked = 1",
    invoice_join=JoinDirection.INCLUSIVE,
    exclusions=("s.deleted = 0", UPSELL_EXCLUSION),
    join_overrides={"source": "source_invoice"},
)

VALIDATION_MIN_SAMPLE = 3
LEGACY_MIN_SAMPLE = 0
