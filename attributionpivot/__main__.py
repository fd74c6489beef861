from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date

from dotenv import load_dotenv

from attributionpivot.config import configure_logging, default_ads_db_path, default_crm_db_path
from attributionpivot.db import SqliteDataSource
from attributionpivot.periods import PERIOD_TYPES, generate_time_periods
from attributionpivot.planner import DETAIL_METRICS, TableFilter
from attributionpivot.report import (
    DetailRequest,
    MarketingRequest,
    PivotRequest,
    get_approval_rate_data,
    get_marketing_data,
    get_rate_details,
    get_validation_rate_data,
)
from attributionpivot.util import parse_iso_date


def _print(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, default=str))


def _pairs(values: list[str], flag: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise SystemExit(f"{flag} expects DIMENSION=VALUE, got {item!r}")
        out[key.strip()] = value
    return out


def _table_filters(values: list[str]) -> tuple[TableFilter, ...]:
    out = []
    for item in values:
        parts = item.split(":", 2)
        if len(parts) != 3:
            raise SystemExit(f"--where expects DIMENSION:OPERATOR:VALUE, got {item!r}")
        out.append(TableFilter(dimension=parts[0], operator=parts[1], value=parts[2]))
    return tuple(out)


def _add_pivot_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--start-date", type=str, required=True)
    p.add_argument("--end-date", type=str, required=True)
    p.add_argument("--dimensions", type=str, required=True, help="Comma-separated dimension ids, outermost first")
    p.add_argument("--depth", type=int, default=0)
    p.add_argument("--parent", action="append", default=[], help="Ancestor filter DIMENSION=VALUE (repeatable)")
    p.add_argument("--rate-mode", type=str, default="approval", choices=["approval", "pay", "buy"])
    p.add_argument("--period-type", type=str, default="monthly", choices=list(PERIOD_TYPES))


def _dims(value: str) -> tuple[str, ...]:
    return tuple(d.strip() for d in value.split(",") if d.strip())


def main(argv: list[str]) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(prog="attributionpivot", description="Ads vs CRM attribution pivots and rate reports.")
    parser.add_argument("--ads-db", type=str, default=default_ads_db_path(), help="Ads SQLite db path")
    parser.add_argument("--crm-db", type=str, default=default_crm_db_path(), help="CRM SQLite db path")
    parser.add_argument("--log-level", type=str, default=None)

    sub = parser.add_subparsers(dest="cmd", required=True)

    periods = sub.add_parser("periods", help="Print the period columns for a date range.")
    periods.add_argument("--start-date", type=str, required=True)
    periods.add_argument("--end-date", type=str, required=True)
    periods.add_argument("--period-type", type=str, default="monthly", choices=list(PERIOD_TYPES))

    validation = sub.add_parser("validation-rate", help="Approval / pay / buy rate pivot from the CRM.")
    _add_pivot_args(validation)
    validation.add_argument("--min-sample", type=int, default=None)

    approval = sub.add_parser("approval-rate", help="Legacy approval rate pivot (no sample threshold).")
    _add_pivot_args(approval)

    marketing = sub.add_parser("marketing", help="Ad spend pivot matched against CRM conversions.")
    _add_pivot_args(marketing)
    marketing.add_argument("--where", action="append", default=[], help="Table filter DIMENSION:OPERATOR:VALUE")
    marketing.add_argument("--sort-by", type=str, default="cost")
    marketing.add_argument("--sort-direction", type=str, default="desc", choices=["asc", "desc"])
    marketing.add_argument("--limit", type=int, default=None)

    details = sub.add_parser("details", help="Records behind one rate cell.")
    details.add_argument("--start-date", type=str, required=True)
    details.add_argument("--end-date", type=str, required=True)
    details.add_argument("--dimensions", type=str, required=True)
    details.add_argument("--depth", type=int, default=0)
    details.add_argument("--filter", action="append", default=[], help="DIMENSION=VALUE down to the inspected row")
    details.add_argument("--rate-mode", type=str, default="approval", choices=["approval", "pay", "buy"])
    details.add_argument("--metric", type=str, default="trials", choices=list(DETAIL_METRICS))
    details.add_argument("--page", type=int, default=1)
    details.add_argument("--page-size", type=int, default=50)
    details.add_argument("--legacy", action="store_true", help="Use the legacy approval report definition")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.cmd == "periods":
        try:
            start, end = parse_iso_date(args.start_date), parse_iso_date(args.end_date)
        except ValueError as exc:
            raise SystemExit(str(exc))
        _print([p.to_dict() for p in generate_time_periods(start, end, args.period_type, today=date.today())])
        return 0

    crm = SqliteDataSource(args.crm_db)

    if args.cmd == "details":
        request = DetailRequest(
            start_date=args.start_date,
            end_date=args.end_date,
            dimensions=_dims(args.dimensions),
            depth=args.depth,
            filters=_pairs(args.filter, "--filter"),
            rate_mode=args.rate_mode,
            metric=args.metric,
            page=args.page,
            page_size=args.page_size,
        )
        result = asyncio.run(get_rate_details(request, crm, legacy=args.legacy))
        _print(result)
        return 0 if result["success"] else 1

    common = dict(
        start_date=args.start_date,
        end_date=args.end_date,
        dimensions=_dims(args.dimensions),
        depth=args.depth,
        parent_filters=_pairs(args.parent, "--parent"),
        rate_mode=args.rate_mode,
        period_type=args.period_type,
    )

    if args.cmd == "validation-rate":
        result = asyncio.run(get_validation_rate_data(PivotRequest(**common), crm, min_sample=args.min_sample))
    elif args.cmd == "approval-rate":
        result = asyncio.run(get_approval_rate_data(PivotRequest(**common), crm))
    elif args.cmd == "marketing":
        request = MarketingRequest(
            **common,
            table_filters=_table_filters(args.where),
            sort_by=args.sort_by,
            sort_direction=args.sort_direction,
            limit=args.limit,
        )
        result = asyncio.run(get_marketing_data(request, SqliteDataSource(args.ads_db), crm))
    else:
        return 1

    _print(result)
    return 0 if result["success"] else 1


def cli() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
