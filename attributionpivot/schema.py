from __future__ import annotations

import sqlite3
from pathlib import Path


CRM_SCHEMA = """
CREATE TABLE IF NOT EXISTS source (
  id INTEGER PRIMARY KEY,
  source TEXT
);

CREATE TABLE IF NOT EXISTS customer (
  id INTEGER PRIMARY KEY,
  first_name TEXT,
  last_name TEXT,
  email TEXT,
  country TEXT,
  date_registered TEXT
);

CREATE TABLE IF NOT EXISTS product_group (
  id INTEGER PRIMARY KEY,
  group_name TEXT
);

CREATE TABLE IF NOT EXISTS product (
  id INTEGER PRIMARY KEY,
  product_name TEXT,
  sku TEXT,
  product_group_id INTEGER
);

CREATE TABLE IF NOT EXISTS subscription (
  id INTEGER PRIMARY KEY,
  customer_id INTEGER NOT NULL,
  source_id INTEGER,
  product_id INTEGER,
  date_create TEXT NOT NULL,
  deleted INTEGER NOT NULL DEFAULT 0,
  tracking_id TEXT,
  tracking_id_2 TEXT,
  tracking_id_4 TEXT
);

CREATE TABLE IF NOT EXISTS invoice (
  id INTEGER PRIMARY KEY,
  subscription_id INTEGER,
  customer_id INTEGER,
  source_id INTEGER,
  type INTEGER NOT NULL,
  deleted INTEGER NOT NULL DEFAULT 0,
  is_marked INTEGER NOT NULL DEFAULT 0,
  on_hold INTEGER NOT NULL DEFAULT 0,
  tag TEXT,
  invoice_date TEXT,
  tracking_id TEXT,
  tracking_id_2 TEXT,
  tracking_id_4 TEXT
);

CREATE TABLE IF NOT EXISTS invoice_proccessed (
  id INTEGER PRIMARY KEY,
  invoice_id INTEGER NOT NULL,
  date_paid TEXT,
  date_bought TEXT
);

CREATE TABLE IF NOT EXISTS invoice_product (
  invoice_id INTEGER NOT NULL,
  product_id INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_subscription_date ON subscription(date_create);
CREATE INDEX IF NOT EXISTS idx_invoice_subscription ON invoice(subscription_id);
CREATE INDEX IF NOT EXISTS idx_invoice_proccessed_invoice ON invoice_proccessed(invoice_id);
"""

ADS_SCHEMA = """
CREATE TABLE IF NOT EXISTS merged_ads_spending (
  date TEXT NOT NULL,
  network TEXT,
  campaign_id TEXT,
  campaign_name TEXT,
  adset_id TEXT,
  adset_name TEXT,
  ad_id TEXT,
  ad_name TEXT,
  cost REAL NOT NULL DEFAULT 0,
  clicks INTEGER NOT NULL DEFAULT 0,
  impressions INTEGER NOT NULL DEFAULT 0,
  conversions REAL NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS app_products (
  id INTEGER PRIMARY KEY,
  name TEXT
);

CREATE TABLE IF NOT EXISTS app_campaign_classifications (
  campaign_id TEXT PRIMARY KEY,
  product_id INTEGER,
  country_code TEXT,
  is_ignored BOOLEAN NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_spend_date ON merged_ads_spending(date);
"""


def create_database(path: str | Path, schema: str) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(schema)
        conn.commit()
    finally:
        conn.close()
    return path


def create_crm_database(path: str | Path) -> Path:
    return create_database(path, CRM_SCHEMA)


def create_ads_database(path: str | Path) -> Path:
    return create_database(path, ADS_SCHEMA)
