from datetime import date

import pytest

from attributionpivot.lookups import country_to_crm, match_network_to_source, sources_for_networks
from attributionpivot.tools.ads import SpendDimensionRow, rollup_spend_rows
from attributionpivot.tools.attribution import (
    MatchTotals,
    build_source_indexes,
    build_tiered_indexes,
    build_unknown_row,
    collect_attributed_rows,
    compute_source_totals,
    match_ads_to_crm,
    match_ads_to_crm_by_source,
    match_ads_to_crm_by_source_country,
)
from attributionpivot.tools.conversions import ConversionRow, conversion_row_from_db
from attributionpivot.tools.tracking import build_tiered_index, classify_tier


def _spend(**kw):
    defaults = dict(
        dimension_value="Camp One",
        campaign_ids=frozenset({"c1"}),
        adset_ids=frozenset({"as1"}),
        ad_ids=frozenset({"a1"}),
        networks=frozenset({"Google Ads"}),
        cost=100.0,
    )
    defaults.update(kw)
    return SpendDimensionRow(**defaults)


def _indexes(subscriptions=(), trials=()):
    return build_tiered_indexes(subscriptions, trials, [])


def test_tiers_partition_every_row_exactly_once():
    rows = [
        ConversionRow(source="adwords", campaign_id="c1", adset_id="as1", ad_id="a1"),
        ConversionRow(source="adwords", campaign_id="c1", adset_id="as1", ad_id="null"),
        ConversionRow(source="adwords", campaign_id="c1", adset_id="null", ad_id="a1"),
        ConversionRow(source="adwords", campaign_id="c1", adset_id="", ad_id=None),
        ConversionRow(source="adwords", campaign_id=None, adset_id="as1", ad_id="a1"),
        ConversionRow(source="adwords", campaign_id="null"),
    ]
    index = build_tiered_index(rows)

    assert len(index) == len(rows)
    assert index.tier_sizes() == {"full": 1, "campaign_adset": 1, "campaign_only": 2, "source_only": 2}


def test_literal_null_adset_falls_back_to_campaign_only():
    row = ConversionRow(source="adwords", campaign_id="c1", adset_id="null", ad_id="a1")
    assert classify_tier(row) == "campaign_only"


def test_network_without_matching_source_yields_zeros():
    row = ConversionRow(source="bing", campaign_id="c1", adset_id="as1", ad_id="a1", subscription_count=5, trials_approved_count=3)
    metrics = match_ads_to_crm(_spend(), _indexes([row], [row]))

    assert metrics.totals == MatchTotals()
    assert metrics.approval_rate == 0
    assert metrics.real_cpa == 0
    assert metrics.ots_approval_rate == 0
    assert metrics.upsell_approval_rate == 0


def test_full_tracking_match_computes_rates_and_cpa():
    row = ConversionRow(source="adwords", campaign_id="c1", adset_id="as1", ad_id="a1", subscription_count=10, trials_approved_count=7)
    metrics = match_ads_to_crm(_spend(), _indexes([row]))

    assert metrics.approval_rate == pytest.approx(0.7)
    assert metrics.real_cpa == pytest.approx(100 / 7)
    assert metrics.to_dict()["real_cpa"] == 14.29


def test_partial_tracking_rows_match_at_coarser_tiers():
    rows = [
        ConversionRow(source="adwords", campaign_id="c1", adset_id="as1", ad_id="a1", subscription_count=1),
        ConversionRow(source="google", campaign_id="c1", adset_id="as1", ad_id="null", subscription_count=2),
        ConversionRow(source="ADWORDS", campaign_id="c1", subscription_count=4),
        ConversionRow(source="adwords", subscription_count=8),
        ConversionRow(source="adwords", campaign_id="c2", subscription_count=16),
        ConversionRow(source="facebook", campaign_id="c1", adset_id="as1", ad_id="a1", subscription_count=32),
    ]
    metrics = match_ads_to_crm(_spend(), _indexes(rows))
    assert metrics.totals.subscriptions == 1 + 2 + 4 + 8


def test_coarse_rows_are_counted_under_every_spend_row_of_the_campaign():
    row = ConversionRow(source="adwords", campaign_id="c1", subscription_count=3)
    indexes = _indexes([row])

    first = match_ads_to_crm(_spend(ad_ids=frozenset({"a1"})), indexes)
    second = match_ads_to_crm(_spend(ad_ids=frozenset({"a2"})), indexes)

    assert first.totals.subscriptions == 3
    assert second.totals.subscriptions == 3


def test_date_scoped_spend_rows_only_take_rows_from_their_days():
    rows = [
        ConversionRow(source="adwords", campaign_id="c1", date=date(2024, 1, 5), subscription_count=1),
        ConversionRow(source="adwords", campaign_id="c1", date=date(2024, 1, 6), subscription_count=2),
    ]
    spend = _spend(dimension_value="2024-01-05", dates=frozenset({date(2024, 1, 5)}))
    assert [r.subscription_count for r in collect_attributed_rows(spend, _indexes(rows))] == [1]


def test_source_matching_counts_each_alias_once():
    rows = [
        ConversionRow(source="adwords", subscription_count=2),
        ConversionRow(source="google", subscription_count=3),
        ConversionRow(source="meta", subscription_count=100),
    ]
    indexes = build_source_indexes(rows, [], [])
    spend = _spend(dimension_value="Google Ads", networks=frozenset({"Google Ads", "google ads"}))

    assert match_ads_to_crm_by_source(spend, indexes).totals.subscriptions == 5
    assert compute_source_totals(indexes, ["Google Ads", "Facebook"]).subscriptions == 105


def test_source_country_matching_uses_mapped_country():
    rows = [
        ConversionRow(source="adwords", country="denmark", subscription_count=4),
        ConversionRow(source="adwords", country="sweden", subscription_count=9),
    ]
    indexes = build_source_indexes(rows, [], [], by_country=True)

    by_own_value = match_ads_to_crm_by_source_country(_spend(dimension_value="DK"), indexes)
    by_parent = match_ads_to_crm_by_source_country(_spend(dimension_value="Google Ads"), indexes, "SE")

    assert by_own_value.totals.subscriptions == 4
    assert by_parent.totals.subscriptions == 9


def test_unknown_row_holds_the_unattributed_residual():
    source_totals = MatchTotals(subscriptions=10, trials=8, trials_approved=5)
    matched = MatchTotals(subscriptions=7, trials=8, trials_approved=6)

    unknown = build_unknown_row(source_totals, matched)

    assert unknown.dimension_value == "Unknown"
    assert unknown.cost == 0
    assert unknown.totals.subscriptions == 3
    assert unknown.totals.trials == 0
    assert unknown.totals.trials_approved == 0


def test_no_unknown_row_without_a_gap():
    totals = MatchTotals(subscriptions=4, trials=2)
    assert build_unknown_row(totals, totals) is None


def test_rollup_keeps_tracking_ids_and_labels_blank_values_unknown():
    rows = [
        {"dimension_value": "Camp One", "network": "Google Ads", "campaign_id": "c1", "adset_id": "as1", "ad_id": "a1", "cost": 10, "clicks": 2, "impressions": 20},
        {"dimension_value": "Camp One", "network": "Google Ads", "campaign_id": "c1", "adset_id": "as1", "ad_id": "null", "cost": "5.5", "clicks": 1, "impressions": 10},
        {"dimension_value": None, "network": "Bing", "campaign_id": "c9", "adset_id": None, "ad_id": None, "cost": 3},
    ]
    by_value = {r.dimension_value: r for r in rollup_spend_rows(rows)}

    camp = by_value["Camp One"]
    assert camp.cost == pytest.approx(15.5)
    assert camp.clicks == 3
    assert camp.ad_ids == frozenset({"a1"})
    assert by_value[None].label == "Unknown"
    assert by_value[None].dates is None


def test_rollup_by_date_scopes_rows_to_their_day():
    rows = [{"dimension_value": "2024-01-05", "network": "Google Ads", "campaign_id": "c1", "cost": 1}]
    assert rollup_spend_rows(rows, by_date=True)[0].dates == frozenset({date(2024, 1, 5)})


def test_conversion_row_from_db_coerces_counts_and_dates():
    row = conversion_row_from_db({"source": "adwords", "campaign_id": 12, "date": "2024-01-05", "subscription_count": "3"})
    assert row.campaign_id == "12"
    assert row.date == date(2024, 1, 5)
    assert row.subscription_count == 3
    assert row.trial_count == 0


def test_network_aliases_and_country_codes():
    assert match_network_to_source("GOOGLE ADS", " AdWords ")
    assert not match_network_to_source("Google Ads", None)
    assert sources_for_networks(["Facebook", "facebook"]) == ["facebook", "meta", "fb"]
    assert country_to_crm("dk") == "denmark"
    assert country_to_crm("XX") == "xx"
