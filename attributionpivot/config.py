from __future__ import annotations

import logging
import os
from pathlib import Path

from attributionpivot.dimensions import VALIDATION_MIN_SAMPLE
from attributionpivot.util import to_int


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def default_ads_db_path() -> str:
    return os.environ.get("ATTRIBUTIONPIVOT_ADS_DB_PATH", str(Path("data/dummy/ads_demo.sqlite")))


def default_crm_db_path() -> str:
    return os.environ.get("ATTRIBUTIONPIVOT_CRM_DB_PATH", str(Path("data/dummy/crm_demo.sqlite")))


def fetch_row_limit() -> int:
    limit = to_int(os.environ.get("ATTRIBUTIONPIVOT_ROW_LIMIT"), 10000)
    return limit if limit > 0 else 10000


def min_sample_threshold() -> int:
    return max(0, to_int(os.environ.get("ATTRIBUTIONPIVOT_MIN_SAMPLE"), VALIDATION_MIN_SAMPLE))


def configure_logging(level: str | None = None) -> None:
    name = (level or os.environ.get("ATTRIBUTIONPIVOT_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
