#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import random
import sqlite3
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Iterable

from attributionpivot.schema import create_ads_database, create_crm_database


NETWORKS = [
    {"network": "Google Ads", "prefix": "g", "sources": ["adwords", "google"], "base_cpc": 2.20},
    {"network": "Facebook", "prefix": "fb", "sources": ["facebook", "meta", "fb"], "base_cpc": 1.10},
]
COUNTRIES = [("DK", "Denmark"), ("SE", "Sweden"), ("NO", "Norway"), ("FI", "Finland")]
PRODUCTS = [("Balansera", "Balansera Group"), ("Flexi Joint", "Joint Care"), ("Sleep Well", None)]
FIRST_NAMES = ["Anna", "Erik", "Maja", "Lars", "Sofia", "Mikkel", "Ida", "Jonas"]
LAST_NAMES = ["Hansen", "Nilsson", "Berg", "Larsen", "Lind", "Dahl"]


def _iso_date(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def _daterange(start: date, end: date) -> Iterable[date]:
    if end < start:
        raise ValueError("end_date must be >= start_date")
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _build_ads() -> list[dict[str, Any]]:
    ads: list[dict[str, Any]] = []
    for n in NETWORKS:
        for campaign_idx, (country_code, _) in enumerate(COUNTRIES, start=1):
            campaign_id = f"{n['prefix']}_camp_{campaign_idx:02d}"
            for adset_idx in range(1, 3):
                adset_id = f"{campaign_id}_as_{adset_idx:02d}"
                for ad_idx in range(1, 3):
                    ads.append(
                        {
                            "network": n["network"],
                            "sources": n["sources"],
                            "base_cpc": n["base_cpc"],
                            "country_code": country_code,
                            "product_id": (campaign_idx % len(PRODUCTS)) + 1,
                            "campaign_id": campaign_id,
                            "campaign_name": f"{n['network']} {country_code} Campaign",
                            "adset_id": adset_id,
                            "adset_name": f"{n['network']} {country_code} Ad Set {adset_idx}",
                            "ad_id": f"{adset_id}_ad_{ad_idx:02d}",
                            "ad_name": f"{n['network']} {country_code} Ad {adset_idx}.{ad_idx}",
                        }
                    )
    return ads


def _tracking(rng: random.Random, ad: dict[str, Any]) -> tuple[Any, Any, Any]:
    """Tracking ids as the CRM receives them: mostly complete, sometimes partial or 'null'."""
    roll = rng.random()
    if roll < 0.70:
        return ad["campaign_id"], ad["adset_id"], ad["ad_id"]
    if roll < 0.80:
        return ad["campaign_id"], ad["adset_id"], "null"
    if roll < 0.88:
        return ad["campaign_id"], rng.choice(["null", "", None]), ad["ad_id"]
    return None, None, None


def _insert(conn: sqlite3.Connection, table: str, rows: list[dict[str, Any]]) -> None:
    if not rows:
        return
    cols = list(rows[0].keys())
    placeholders = ", ".join(["?"] * len(cols))
    conn.executemany(
        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders});",
        ([row[c] for c in cols] for row in rows),
    )


def generate_dummy_data(
    *,
    start_date: date,
    end_date: date,
    seed: int,
    ads_path: Path,
    crm_path: Path,
) -> dict[str, Any]:
    rng = random.Random(seed)
    ads = _build_ads()

    for p in (ads_path, crm_path):
        if p.exists():
            p.unlink()
    create_ads_database(ads_path)
    create_crm_database(crm_path)

    spend: list[dict[str, Any]] = []
    sources: dict[str, int] = {}
    customers: list[dict[str, Any]] = []
    subscriptions: list[dict[str, Any]] = []
    invoices: list[dict[str, Any]] = []
    processed: list[dict[str, Any]] = []
    invoice_products: list[dict[str, Any]] = []

    for n in NETWORKS:
        for src in n["sources"]:
            sources[src] = len(sources) + 1
    sources["organic"] = len(sources) + 1

    for d in _daterange(start_date, end_date):
        for ad in ads:
            clicks = rng.randint(5, 60)
            spend.append(
                {
                    "date": _iso_date(d),
                    "network": ad["network"],
                    "campaign_id": ad["campaign_id"],
                    "campaign_name": ad["campaign_name"],
                    "adset_id": ad["adset_id"],
                    "adset_name": ad["adset_name"],
                    "ad_id": ad["ad_id"],
                    "ad_name": ad["ad_name"],
                    "cost": round(clicks * ad["base_cpc"] * rng.uniform(0.8, 1.2), 2),
                    "clicks": clicks,
                    "impressions": clicks * rng.randint(20, 60),
                    "conversions": float(rng.randint(0, 3)),
                }
            )

            for _ in range(rng.randint(0, 2)):
                customer_id = len(customers) + 1
                country = next(name for code, name in COUNTRIES if code == ad["country_code"])
                created = f"{_iso_date(d)} {rng.randint(0, 23):02d}:{rng.randint(0, 59):02d}:00"
                customers.append(
                    {
                        "id": customer_id,
                        "first_name": rng.choice(FIRST_NAMES),
                        "last_name": rng.choice(LAST_NAMES),
                        "email": f"customer{customer_id}@example.com",
                        "country": country,
                        "date_registered": created,
                    }
                )
                campaign, adset, ad_id = _tracking(rng, ad)
                source = rng.choice(ad["sources"]) if rng.random() < 0.95 else "organic"
                sub_id = len(subscriptions) + 1
                subscriptions.append(
                    {
                        "id": sub_id,
                        "customer_id": customer_id,
                        "source_id": sources[source],
                        "product_id": ad["product_id"],
                        "date_create": created,
                        "deleted": 1 if rng.random() < 0.02 else 0,
                        "tracking_id": ad_id,
                        "tracking_id_2": adset,
                        "tracking_id_4": campaign,
                    }
                )

                invoice_id = len(invoices) + 1
                invoice_day = d + timedelta(days=rng.randint(0, 3))
                invoices.append(
                    {
                        "id": invoice_id,
                        "subscription_id": sub_id,
                        "customer_id": customer_id,
                        "source_id": sources[source],
                        "type": 1,
                        "deleted": 0,
                        "is_marked": 1 if rng.random() < 0.7 else 0,
                        "on_hold": 1 if rng.random() < 0.05 else 0,
                        "tag": None,
                        "invoice_date": f"{_iso_date(invoice_day)} 12:00:00",
                        "tracking_id": ad_id,
                        "tracking_id_2": adset,
                        "tracking_id_4": campaign,
                    }
                )
                invoice_products.append({"invoice_id": invoice_id, "product_id": ad["product_id"]})
                if rng.random() < 0.6:
                    paid = invoice_day + timedelta(days=rng.randint(1, 5))
                    processed.append(
                        {
                            "id": len(processed) + 1,
                            "invoice_id": invoice_id,
                            "date_paid": f"{_iso_date(paid)} 09:00:00" if rng.random() < 0.8 else None,
                            "date_bought": f"{_iso_date(paid)} 09:00:00",
                        }
                    )

                if rng.random() < 0.15:
                    invoices.append(
                        {
                            "id": len(invoices) + 1,
                            "subscription_id": None,
                            "customer_id": customer_id,
                            "source_id": sources[source],
                            "type": 1,
                            "deleted": 0,
                            "is_marked": 1 if rng.random() < 0.5 else 0,
                            "on_hold": 0,
                            "tag": f"parent-sub-id={sub_id}",
                            "invoice_date": f"{_iso_date(invoice_day)} 15:00:00",
                            "tracking_id": None,
                            "tracking_id_2": None,
                            "tracking_id_4": None,
                        }
                    )

                if rng.random() < 0.10:
                    campaign, adset, ad_id = _tracking(rng, ad)
                    invoices.append(
                        {
                            "id": len(invoices) + 1,
                            "subscription_id": None,
                            "customer_id": customer_id,
                            "source_id": sources[source],
                            "type": 3,
                            "deleted": 0,
                            "is_marked": 1 if rng.random() < 0.8 else 0,
                            "on_hold": 0,
                            "tag": None,
                            "invoice_date": f"{_iso_date(d)} 18:00:00",
                            "tracking_id": ad_id,
                            "tracking_id_2": adset,
                            "tracking_id_4": campaign,
                        }
                    )

    groups = sorted({g for _, g in PRODUCTS if g})
    with sqlite3.connect(str(ads_path)) as conn:
        _insert(conn, "merged_ads_spending", spend)
        _insert(conn, "app_products", [{"id": i, "name": name} for i, (name, _) in enumerate(PRODUCTS, start=1)])
        classifications = {
            ad["campaign_id"]: {
                "campaign_id": ad["campaign_id"],
                "product_id": ad["product_id"],
                "country_code": ad["country_code"],
                "is_ignored": 1 if rng.random() < 0.1 else 0,
            }
            for ad in ads
        }
        _insert(conn, "app_campaign_classifications", list(classifications.values()))
        conn.commit()

    with sqlite3.connect(str(crm_path)) as conn:
        _insert(conn, "source", [{"id": i, "source": s} for s, i in sources.items()])
        _insert(conn, "product_group", [{"id": i, "group_name": g} for i, g in enumerate(groups, start=1)])
        _insert(
            conn,
            "product",
            [
                {
                    "id": i,
                    "product_name": name,
                    "sku": f"SKU-{i:03d}",
                    "product_group_id": groups.index(group) + 1 if group else None,
                }
                for i, (name, group) in enumerate(PRODUCTS, start=1)
            ],
        )
        _insert(conn, "customer", customers)
        _insert(conn, "subscription", subscriptions)
        _insert(conn, "invoice", invoices)
        _insert(conn, "invoice_proccessed", processed)
        _insert(conn, "invoice_product", invoice_products)
        conn.commit()

    return {
        "ads_db": str(ads_path),
        "crm_db": str(crm_path),
        "date_range": {"start_date": _iso_date(start_date), "end_date": _iso_date(end_date)},
        "row_counts": {
            "merged_ads_spending": len(spend),
            "customer": len(customers),
            "subscription": len(subscriptions),
            "invoice": len(invoices),
            "invoice_proccessed": len(processed),
        },
        "notes": [
            "All data is synthetic (dummy) and not business truth.",
            "About 30% of CRM rows carry partial, 'null' or missing tracking ids.",
        ],
    }


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Generate synthetic ads + CRM dummy databases (SQLite).")
    parser.add_argument("--start-date", type=str, default="", help="YYYY-MM-DD (default: 90 days ago)")
    parser.add_argument("--end-date", type=str, default="", help="YYYY-MM-DD (default: today)")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--ads-path", type=str, default="data/dummy/ads_demo.sqlite")
    parser.add_argument("--crm-path", type=str, default="data/dummy/crm_demo.sqlite")
    args = parser.parse_args(argv)

    today = date.today()
    start = today - timedelta(days=90) if not args.start_date else date.fromisoformat(args.start_date)
    end = today if not args.end_date else date.fromisoformat(args.end_date)

    result = generate_dummy_data(
        start_date=start,
        end_date=end,
        seed=args.seed,
        ads_path=Path(args.ads_path),
        crm_path=Path(args.crm_path),
    )
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
