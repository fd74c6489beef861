#!/usr/bin/env python3
"""Create empty ads and CRM SQLite databases with the expected schema (no rows)."""

import argparse
from pathlib import Path

from attributionpivot.schema import create_ads_database, create_crm_database


def init_db(ads_path: str, crm_path: str) -> None:
    for p in (Path(ads_path), Path(crm_path)):
        if p.exists():
            p.unlink()

    create_ads_database(ads_path)
    create_crm_database(crm_path)

    print(f"Empty ads database created at {ads_path}")
    print(f"Empty CRM database created at {crm_path}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--ads-path", default="data/dummy/ads_demo.sqlite")
    parser.add_argument("--crm-path", default="data/dummy/crm_demo.sqlite")
    args = parser.parse_args()
    init_db(args.ads_path, args.crm_path)
