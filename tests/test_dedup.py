from __future__ import annotations

import pytest

from scout.models.company import Signal
from scout.services.dedup import dedupe, merge_group, round_half_up, source_label
from tests.helpers.search_stubs import make_company, utc


def _signal(domain: str, title: str) -> Signal:
    return Signal(
        id=Signal.make_id(domain, "funding", title),
        company_domain=domain,
        type="funding",
        title=title,
        source="exa",
    )


def test_merge_weights_the_newest_record():
    older = make_company(
        "example.com",
        icp_score=80,
        contact_count=12,
        sources=["exa"],
        revenue="$10M",
        last_refreshed=utc(2026, 1, 1),
    )
    newer = make_company(
        "www.example.com",
        icp_score=60,
        contact_count=4,
        sources=["serper"],
        last_refreshed=utc(2026, 3, 1),
    )

    merged = dedupe([older, newer])

    assert len(merged) == 1
    company = merged[0]
    assert company.icp_score == 68
    assert company.contact_count == 12
    assert company.sources == ["serper", "exa"]
    assert company.revenue == "$10M"
    assert company.domain == "example.com"


def test_dedupe_groups_by_root_domain_in_first_seen_order():
    companies = [
        make_company("beta.io"),
        make_company("shop.acme.co.uk", last_refreshed=utc(2026, 1, 1)),
        make_company("acme.co.uk", last_refreshed=utc(2026, 2, 1)),
        make_company("gamma.com"),
    ]

    result = dedupe(companies)

    assert [company.root_domain for company in result] == ["beta.io", "acme.co.uk", "gamma.com"]
    assert result[1].domain == "acme.co.uk"


def test_singletons_pass_through_untouched():
    company = make_company("solo.com", icp_score=41, sources=["parallel"])

    assert dedupe([company]) == [company]


def test_dedupe_is_idempotent():
    companies = [
        make_company("example.com", icp_score=80, last_refreshed=utc(2026, 1, 1)),
        make_company("www.example.com", icp_score=60, last_refreshed=utc(2026, 3, 1)),
        make_company("other.com", icp_score=10),
    ]

    once = dedupe(companies)

    assert dedupe(once) == once


def test_merge_unions_signals_by_id():
    shared = _signal("example.com", "Raised Series A")
    first = make_company("example.com", signals=[shared], last_refreshed=utc(2026, 1, 1))
    second = make_company(
        "example.com",
        signals=[shared, _signal("example.com", "Opened Berlin office")],
        last_refreshed=utc(2026, 2, 1),
    )

    merged = merge_group([first, second])

    assert [signal.title for signal in merged.signals] == ["Raised Series A", "Opened Berlin office"]


def test_equal_timestamps_keep_input_order():
    first = make_company("example.com", name="First", icp_score=50, last_refreshed=utc(2026, 1, 1))
    second = make_company("example.com", name="Second", icp_score=50, last_refreshed=utc(2026, 1, 1))

    assert merge_group([first, second]).name == "First"


def test_custom_recency_weight():
    older = make_company("example.com", icp_score=80, last_refreshed=utc(2026, 1, 1))
    newer = make_company("example.com", icp_score=60, last_refreshed=utc(2026, 3, 1))

    assert merge_group([older, newer], newest_weight=1.0).icp_score == 70


def test_merge_group_rejects_empty_input():
    with pytest.raises(ValueError):
        merge_group([])


@pytest.mark.parametrize(("value", "expected"), [(67.5, 68), (68.4, 68), (0.5, 1), (2.5, 3)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_source_label():
    assert source_label(["exa", "apollo"]) == "Found by Exa + Apollo"
    assert source_label(["serper"]) == "Found by Google"
    assert source_label([]) == ""
