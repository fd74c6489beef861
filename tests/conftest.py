from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

import pytest

from attributionpivot.db import SqliteDataSource
from attributionpivot.schema import create_ads_database, create_crm_database


def _insert(path: Path, table: str, rows: list[dict[str, Any]]) -> None:
    cols = list(rows[0].keys())
    with sqlite3.connect(str(path)) as conn:
        conn.executemany(
            f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
            [[r[c] for c in cols] for r in rows],
        )
        conn.commit()


def _customer(id: int, country: str | None, registered: str) -> dict[str, Any]:
    return {
        "id": id,
        "first_name": f"First{id}",
        "last_name": f"Last{id}",
        "email": f"c{id}@example.com",
        "country": country,
        "date_registered": registered,
    }


def _subscription(id: int, customer: int, source: int, created: str, tracking=(None, None, None)) -> dict[str, Any]:
    campaign, adset, ad = tracking
    return {
        "id": id,
        "customer_id": customer,
        "source_id": source,
        "product_id": 1,
        "date_create": created,
        "deleted": 0,
        "tracking_id_4": campaign,
        "tracking_id_2": adset,
        "tracking_id": ad,
    }


def _invoice(id: int, sub: int | None, customer: int, source: int, when: str, marked: int, **extra: Any) -> dict[str, Any]:
    row = {
        "id": id,
        "subscription_id": sub,
        "customer_id": customer,
        "source_id": source,
        "type": 1,
        "deleted": 0,
        "is_marked": marked,
        "on_hold": 0,
        "tag": None,
        "invoice_date": when,
    }
    row.update(extra)
    return row


@pytest.fixture
def rate_crm(tmp_path: Path) -> SqliteDataSource:
    """CRM with Denmark / Sweden / unknown-country trials over Jan-Mar 2024."""
    path = create_crm_database(tmp_path / "crm.sqlite")
    _insert(path, "source", [{"id": 1, "source": "adwords"}, {"id": 2, "source": "facebook"}, {"id": 3, "source": "bing"}])
    _insert(path, "product_group", [{"id": 1, "group_name": "Joint Care"}])
    _insert(path, "product", [{"id": 1, "product_name": "Flexi Joint", "sku": "SKU-1", "product_group_id": 1}])
    _insert(
        path,
        "customer",
        [_customer(i, "Denmark", "2024-01-01 00:00:00") for i in range(1, 6)]
        + [_customer(6, "Sweden", "2024-01-01 00:00:00"), _customer(7, "Sweden", "2024-01-01 00:00:00")]
        + [_customer(8, None, "2024-01-01 00:00:00")],
    )
    subs = [
        (1, 1, 1, "2024-01-05 10:00:00", 1),
        (2, 2, 1, "2024-01-10 11:00:00", 1),
        (3, 3, 1, "2024-01-20 12:00:00", 0),
        (4, 4, 2, "2024-02-03 09:00:00", 1),
        (5, 5, 1, "2024-03-15 09:00:00", 0),
        (6, 6, 2, "2024-01-07 09:00:00", 1),
        (7, 7, 2, "2024-02-09 09:00:00", 0),
        (8, 8, 3, "2024-01-12 09:00:00", 1),
    ]
    _insert(
        path,
        "subscription",
        [_subscription(sid, cust, src, created) for sid, cust, src, created, _ in subs]
        # Subscription without any trial invoice.
        + [_subscription(9, 1, 1, "2024-01-25 09:00:00")],
    )
    _insert(
        path,
        "invoice",
        [_invoice(sid, sid, cust, src, created, marked) for sid, cust, src, created, marked in subs]
        + [
            _invoice(10, 1, 1, 1, "2024-01-05 10:00:00", 1, tag="parent-sub-id=1"),
            _invoice(11, 2, 2, 1, "2024-01-10 11:00:00", 1, deleted=1),
        ],
    )
    _insert(path, "invoice_product", [{"invoice_id": i, "product_id": 1} for i in range(1, 9)])
    _insert(
        path,
        "invoice_proccessed",
        [
            {"id": 1, "invoice_id": 1, "date_paid": "2024-01-08 09:00:00", "date_bought": "2024-01-06 09:00:00"},
            {"id": 2, "invoice_id": 4, "date_paid": "2024-02-05 09:00:00", "date_bought": None},
            {"id": 3, "invoice_id": 2, "date_paid": None, "date_bought": "2024-01-11 09:00:00"},
        ],
    )
    return SqliteDataSource(str(path))


@pytest.fixture
def marketing_crm(tmp_path: Path) -> SqliteDataSource:
    """CRM rows with complete, partial and missing tracking ids for January 2024."""
    path = create_crm_database(tmp_path / "crm_marketing.sqlite")
    _insert(path, "source", [{"id": 1, "source": "adwords"}, {"id": 2, "source": "facebook"}])
    subs = [
        # id, source, created, tracking (campaign, adset, ad), trial approved
        (1, 1, "2024-01-05 10:00:00", ("c1", "as1", "a1"), 1),
        (2, 1, "2024-01-06 10:00:00", ("c1", "as1", "null"), 0),
        (3, 2, "2024-01-05 11:00:00", ("c1", "as1", "a1"), 1),
        (4, 1, "2024-01-07 10:00:00", (None, None, None), 1),
        (5, 1, "2024-01-08 10:00:00", ("c7", "as7", "a7"), 1),
    ]
    _insert(path, "customer", [_customer(sid, "Denmark", created) for sid, _, created, _, _ in subs])
    _insert(
        path,
        "subscription",
        [_subscription(sid, sid, src, created, tracking) for sid, src, created, tracking, _ in subs],
    )
    _insert(
        path,
        "invoice",
        [_invoice(sid, sid, sid, src, created, marked) for sid, src, created, _, marked in subs],
    )
    return SqliteDataSource(str(path))


@pytest.fixture
def marketing_ads(tmp_path: Path) -> SqliteDataSource:
    path = create_ads_database(tmp_path / "ads.sqlite")
    cols = ("date", "network", "campaign_id", "campaign_name", "adset_id", "adset_name", "ad_id", "ad_name",
            "cost", "clicks", "impressions", "conversions")
    rows = [
        ("2024-01-05", "Google Ads", "c1", "Camp One", "as1", "Set One", "a1", "Ad One", 100.0, 50, 1000, 2.0),
        ("2024-01-06", "Google Ads", "c1", "Camp One", "as1", "Set One", "a2", "Ad Two", 40.0, 20, 500, 1.0),
        ("2024-01-05", "Bing", "c9", "Camp Bing", "as9", "Set Bing", "a9", "Ad Bing", 30.0, 10, 200, 0.0),
    ]
    _insert(path, "merged_ads_spending", [dict(zip(cols, r)) for r in rows])
    _insert(path, "app_products", [{"id": 1, "name": "Balansera"}])
    _insert(
        path,
        "app_campaign_classifications",
        [
            {"campaign_id": "c1", "product_id": 1, "country_code": "DK", "is_ignored": 0},
            {"campaign_id": "c9", "product_id": 1, "country_code": "SE", "is_ignored": 1},
        ],
    )
    return SqliteDataSource(str(path))


@pytest.fixture
def empty_crm(tmp_path: Path) -> SqliteDataSource:
    """A database file with no tables at all."""
    path = tmp_path / "empty.sqlite"
    sqlite3.connect(str(path)).close()
    return SqliteDataSource(str(path))
