from datetime import date

import pytest

from attributionpivot.db import MARIADB, POSTGRES, SQLITE, SqlParams
from attributionpivot.dimensions import ADS_DIMENSIONS, CRM_DIMENSIONS, LEGACY_APPROVAL, RATE_MODES
from attributionpivot.errors import PivotValidationError
from attributionpivot.periods import generate_time_periods
from attributionpivot.planner import (
    MAX_PAGE_SIZE,
    DimensionQuerySpec,
    TableFilter,
    build_parent_filters,
    build_rate_count_query,
    build_rate_detail_queries,
    build_table_filters,
    clamp_limit,
    clamp_page_size,
    validate_spec,
)


PERIODS = generate_time_periods(date(2024, 1, 1), date(2024, 2, 29), "monthly", today=date(2024, 6, 1))


def _spec(dimensions=("country", "source"), depth=1, parents=None, rate_mode="approval"):
    return DimensionQuerySpec(
        dimensions=tuple(dimensions),
        depth=depth,
        parent_filters=parents or {},
        rate_mode=rate_mode,
    )


def test_unknown_parent_value_becomes_a_null_check():
    params = SqlParams(SQLITE)
    clauses = build_parent_filters(_spec(parents={"country": "Unknown"}), CRM_DIMENSIONS, params)

    assert clauses == ["(c.country IS NULL OR c.country = '')"]
    assert params.values == []


def test_tracking_dimension_null_check_includes_literal_null():
    params = SqlParams(SQLITE)
    clauses = build_parent_filters(
        _spec(dimensions=("campaign", "adset"), parents={"campaign": "Unknown"}), CRM_DIMENSIONS, params
    )
    assert "s.tracking_id_4 = 'null'" in clauses[0]


def test_known_parent_value_is_bound():
    params = SqlParams(POSTGRES)
    clauses = build_parent_filters(_spec(parents={"country": "Denmark"}), CRM_DIMENSIONS, params)

    assert clauses == ["c.country = $1"]
    assert params.values == ["Denmark"]


def test_count_query_uses_numeric_placeholders_in_order():
    q = build_rate_count_query(
        _spec(parents={"country": "Denmark"}), PERIODS, RATE_MODES["approval"], CRM_DIMENSIONS, POSTGRES, row_cap=100
    )

    # Two periods with two bound ranges each, then the overall range, the parent value and the limit.
    assert len(q.params) == 2 * 4 + 2 + 1 + 1
    for n in range(1, len(q.params) + 1):
        assert f"${n}" in q.sql
    assert q.params[-2:] == ["Denmark", 100]
    assert "?" not in q.sql
    assert "period_0_trials" in q.sql and "period_1_approved" in q.sql
    assert "LIMIT $12" in q.sql


def test_count_query_groups_by_the_current_dimension_only():
    q = build_rate_count_query(_spec(), PERIODS, RATE_MODES["approval"], CRM_DIMENSIONS, SQLITE, row_cap=10)
    assert "GROUP BY sr.source" in q.sql
    assert "LEFT JOIN customer c ON c.id = s.customer_id" in q.sql


@pytest.mark.parametrize("mode_name", ["approval", "pay", "buy"])
def test_count_and_detail_queries_share_the_rate_mode_definition(mode_name):
    mode = RATE_MODES[mode_name]
    count = build_rate_count_query(_spec(), PERIODS, mode, CRM_DIMENSIONS, SQLITE, row_cap=10)
    pair = build_rate_detail_queries(
        _spec(parents={"country": "Denmark", "source": "adwords"}),
        mode,
        CRM_DIMENSIONS,
        SQLITE,
        start_date="2024-01-01",
        end_date="2024-01-31",
        metric="approved",
    )

    for sql in (count.sql, pair.listing.sql, pair.count.sql):
        assert f"DATE({mode.date_field})" in sql
        assert mode.record_filter in sql
        for exclusion in mode.exclusions:
            assert exclusion in sql
    assert mode.matched_condition in pair.count.sql
    assert pair.count.params == pair.listing.params[: len(pair.count.params)]


def test_matched_listing_joins_the_status_table_exclusively():
    pair = build_rate_detail_queries(
        _spec(dimensions=("country",), depth=0, parents={"country": "Denmark"}),
        RATE_MODES["pay"],
        CRM_DIMENSIONS,
        SQLITE,
        start_date="2024-01-01",
        end_date="2024-01-31",
        metric="approved",
    )
    assert "INNER JOIN invoice_proccessed ipr" in pair.listing.sql
    assert "ipr.date_paid IS NOT NULL" in pair.listing.sql


def test_legacy_approval_reads_source_from_the_invoice():
    q = build_rate_count_query(_spec(), PERIODS, LEGACY_APPROVAL, CRM_DIMENSIONS, SQLITE, row_cap=10)
    assert "LEFT JOIN invoice i" in q.sql
    assert "source sr ON sr.id = i.source_id" in q.sql
    assert "s.deleted = 0" in q.sql


def test_detail_listing_concatenates_per_dialect():
    kwargs = dict(start_date="2024-01-01", end_date="2024-01-31", metric="trials")
    spec = _spec(dimensions=("country",), depth=0, parents={"country": "Denmark"})

    mariadb = build_rate_detail_queries(spec, RATE_MODES["approval"], CRM_DIMENSIONS, MARIADB, **kwargs)
    sqlite = build_rate_detail_queries(spec, RATE_MODES["approval"], CRM_DIMENSIONS, SQLITE, **kwargs)

    assert "CONCAT(" in mariadb.listing.sql
    assert "||" in sqlite.listing.sql


def test_detail_paging_is_bound_and_clamped():
    pair = build_rate_detail_queries(
        _spec(dimensions=("country",), depth=0, parents={"country": "Denmark"}),
        RATE_MODES["approval"],
        CRM_DIMENSIONS,
        SQLITE,
        start_date="2024-01-01",
        end_date="2024-01-31",
        metric="trials",
        page=3,
        page_size=10_000,
    )
    assert pair.listing.params[-2:] == [MAX_PAGE_SIZE, 2 * MAX_PAGE_SIZE]


def test_detail_rejects_unknown_metric():
    with pytest.raises(PivotValidationError):
        build_rate_detail_queries(
            _spec(), RATE_MODES["approval"], CRM_DIMENSIONS, SQLITE, start_date="2024-01-01", end_date="2024-01-31", metric="paid"
        )


@pytest.mark.parametrize(
    "spec, message",
    [
        (_spec(dimensions=()), "At least one dimension"),
        (_spec(depth=2), "out of range"),
        (_spec(depth=-1), "out of range"),
        (_spec(dimensions=("country", "planet")), "Unknown dimension: planet"),
        (_spec(parents={"product": "x"}), "not part of the dimension list"),
    ],
)
def test_validate_spec(spec, message):
    with pytest.raises(PivotValidationError, match=message):
        validate_spec(spec, CRM_DIMENSIONS)


def test_table_filters_render_each_operator():
    params = SqlParams(SQLITE)
    clauses = build_table_filters(
        [
            TableFilter("network", "equals", "Google Ads"),
            TableFilter("network", "not_equals", "Bing"),
            TableFilter("campaign", "contains", "Brand"),
            TableFilter("campaign", "not_contains", "Test"),
            TableFilter("classified_country", "equals", "Unknown"),
        ],
        ADS_DIMENSIONS,
        params,
    )

    assert clauses[0] == "m.network = ?"
    assert clauses[1] == "(m.network IS NULL OR m.network <> ?)"
    assert clauses[2] == "LOWER(m.campaign_name) LIKE ?"
    assert clauses[3] == "(m.campaign_name IS NULL OR LOWER(m.campaign_name) NOT LIKE ?)"
    assert clauses[4] == "(cc.country_code IS NULL OR cc.country_code = '')"
    assert params.values == ["Google Ads", "Bing", "%brand%", "%test%"]


def test_table_filter_rejects_unknown_operator():
    with pytest.raises(PivotValidationError):
        build_table_filters([TableFilter("network", "starts_with", "G")], ADS_DIMENSIONS, SqlParams(SQLITE))


def test_clamps():
    assert clamp_page_size(0) == 1
    assert clamp_page_size(10_000) == MAX_PAGE_SIZE
    assert clamp_limit(None, 500) == 500
    assert clamp_limit(20, 500) == 20
    assert clamp_limit(9999, 500) == 500
