import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from insights.engine import (
    COHORT_DISCLAIMER,
    COHORT_FALLBACK_PATTERNS,
    InvalidRange,
    cohort_top_tag,
    compute_cohort_patterns,
    compute_personal_insights,
    field_average,
    local_now,
    resolve_date_range,
    top_tags,
)
from tools.health_schema import SymptomLog
from tools.symptom_tags import ALL_SYMPTOM_TAGS

TODAY = date(2025, 3, 31)
NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)
UTC = ZoneInfo("UTC")


def _rows(*values, field="pain_intensity"):
    return [{field: v} for v in values]


def _cohort(rows, total=None, range_days=30, **kwargs):
    return compute_cohort_patterns(
        rows,
        total_logs_in_range=len(rows) if total is None else total,
        range_days=range_days,
        now=NOW,
        tz=UTC,
        **kwargs,
    )


def test_empty_rows_yield_nulls_and_zeros():
    summary = compute_personal_insights([], 30)

    assert summary.counts.logged_days == 0
    assert summary.counts.range_days == 30
    assert summary.pain.avg is None
    assert summary.pain.max is None
    assert summary.pain.high_days == 0
    assert summary.stress.avg is None
    assert summary.stress.high_days == 0
    assert summary.sleep.avg is None
    assert summary.energy.low_days == 0
    assert set(summary.energy.distribution.values()) == {0}
    assert set(summary.mood.distribution.values()) == {0}
    assert summary.tags.top == []


def test_row_without_pain_only_bumps_logged_days():
    rows = _rows(4, 8)
    before = compute_personal_insights(rows, 7)
    after = compute_personal_insights(rows + [{"pain_intensity": None, "stress_level": 3}], 7)

    assert before.pain.avg == after.pain.avg == 6.0
    assert before.pain.max == after.pain.max == 8
    assert after.counts.logged_days == before.counts.logged_days + 1
    assert after.stress.avg == 3.0


@pytest.mark.parametrize(
    "values, expected",
    [([5, 6], 5.5), ([1, 2, 2], 1.67), ([0, 0, 1], 0.33), ([10], 10.0)],
)
def test_averages_round_to_two_places(values, expected):
    assert compute_personal_insights(_rows(*values), 30).pain.avg == expected


def test_each_metric_averages_independently():
    rows = [
        {"pain_intensity": 2, "stress_level": None, "sleep_quality": 9},
        {"pain_intensity": None, "stress_level": 8, "sleep_quality": None},
        {"pain_intensity": 6, "stress_level": 4},
    ]
    summary = compute_personal_insights(rows, 30)

    assert summary.pain.avg == 4.0
    assert summary.pain.high_days == 1
    assert summary.stress.avg == 6.0
    assert summary.stress.high_days == 1
    assert summary.sleep.avg == 9.0


def test_distributions_skip_unknown_values():
    rows = [
        {"energy_level": "low", "mood": "happy"},
        {"energy_level": "depleted", "mood": "angry"},
        {"energy_level": "sleepy", "mood": None},
        {"energy_level": "good", "mood": "calm"},
    ]
    summary = compute_personal_insights(rows, 30)

    assert summary.counts.logged_days == 4
    assert summary.energy.distribution == {
        "depleted": 1, "low": 1, "moderate": 0, "good": 1, "energized": 0,
    }
    assert summary.energy.low_days == 2
    assert summary.mood.distribution == {"calm": 1, "stressed": 0, "sad": 0, "happy": 1}


def test_stored_enum_values_must_match_exactly():
    rows = [
        {"energy_level": "high", "mood": "Happy"},
        {"energy_level": "medium", "mood": " calm"},
        {"energy_level": "LOW ", "mood": "angry"},
    ]
    summary = compute_personal_insights(rows, 30)

    assert summary.counts.logged_days == 3
    assert set(summary.energy.distribution.values()) == {0}
    assert set(summary.mood.distribution.values()) == {0}
    assert summary.energy.low_days == 0

    cohort = _cohort([{"energy_level": "LOW "} for _ in range(25)])
    assert cohort.low_energy_pct == 0


def test_top_tags_normalise_case_and_whitespace():
    rows = [{"tags": ["Cramps", " bloating "]}, {"tags": ["cramps"]}]
    top = compute_personal_insights(rows, 30).tags.top

    assert [(t.tag, t.count) for t in top] == [("cramps", 2), ("bloating", 1)]


def test_top_tags_decode_json_strings_and_skip_blanks():
    rows = [
        {"tags_json": '["acne", "", "  "]'},
        {"tags": '["ACNE", "nausea"]'},
        {"tags": "not json"},
    ]
    top = top_tags(rows)

    assert [(t.tag, t.count) for t in top] == [("acne", 2), ("nausea", 1)]


def test_top_tags_rank_only_known_vocabulary():
    rows = [{"tags": ["made_up", "made_up", "cramps"]}]

    top = compute_personal_insights(rows, 30).tags.top
    assert [(t.tag, t.count) for t in top] == [("cramps", 1)]
    assert [t.tag for t in top_tags(rows)] == ["cramps"]
    assert [t.tag for t in top_tags(rows, vocabulary=ALL_SYMPTOM_TAGS)] == ["cramps"]
    assert [t.tag for t in top_tags(rows, vocabulary=None)] == ["made_up", "cramps"]


def test_rows_with_only_unknown_tags_give_empty_top():
    assert compute_personal_insights([{"tags": ["made_up"]}], 7).tags.top == []


def test_top_tags_ties_keep_first_seen_order_and_cap_at_eight():
    tags = ["insomnia", "bloating", "acne", "gas", "spotting", "clotting", "dizziness",
            "nausea", "fatigue", "headache"]
    rows = [{"tags": tags}, {"tags": ["headache"]}]
    top = top_tags(rows)

    assert len(top) == 8
    assert top[0].tag == "headache"
    assert [t.tag for t in top[1:]] == tags[:7]


def test_rows_outside_window_are_ignored():
    rows = [
        {"log_date": TODAY, "pain_intensity": 2},
        {"log_date": TODAY - timedelta(days=10), "pain_intensity": 9},
    ]
    summary = compute_personal_insights(rows, 7, TODAY - timedelta(days=6), TODAY)

    assert summary.counts.logged_days == 1
    assert summary.pain.max == 2


def test_personal_insights_accept_symptom_log_models():
    rows = [
        SymptomLog(user_id="u1", log_date=TODAY, pain_intensity=7, energy_level="moderate",
                   mood="sad", tags='["cramps"]'),
        SymptomLog(user_id="u1", log_date=TODAY - timedelta(days=1), energy_level="bogus"),
    ]
    summary = compute_personal_insights(rows, 7, TODAY - timedelta(days=6), TODAY)

    assert summary.pain.high_days == 1
    assert summary.energy.distribution["moderate"] == 1
    assert summary.mood.distribution["sad"] == 1
    assert summary.tags.top[0].tag == "cramps"


def test_computation_is_idempotent():
    rows = [
        {"pain_intensity": 3, "mood": "calm", "tags": ["cramps"]},
        {"pain_intensity": 7, "energy_level": "low", "tags": ["bloating", "cramps"]},
    ]
    first = compute_personal_insights(rows, 30).model_dump()
    second = compute_personal_insights(rows, 30).model_dump()
    assert first == second

    a = _cohort(rows * 20).model_dump()
    b = _cohort(rows * 20).model_dump()
    a["meta"].pop("generated_at")
    b["meta"].pop("generated_at")
    assert a == b


def test_ninety_day_scenario_counts_high_stress_days():
    start = TODAY - timedelta(days=89)
    rows = []
    for i in range(90):
        if i < 50:
            stress = 8
        elif i < 80:
            stress = 2
        else:
            stress = None
        rows.append(SymptomLog(user_id="u1", log_date=start + timedelta(days=i), stress_level=stress))

    summary = compute_personal_insights(rows, 90, start, TODAY)

    assert summary.counts.logged_days == 90
    assert summary.stress.high_days == 50
    assert summary.stress.avg == 5.75


@pytest.mark.parametrize("range_days", [45, 0, "30", None, True])
def test_invalid_ranges_rejected_in_both_modes(range_days):
    with pytest.raises(InvalidRange):
        compute_personal_insights([], range_days)
    with pytest.raises(InvalidRange):
        _cohort([], range_days=range_days)


def test_seven_days_is_personal_only():
    assert compute_personal_insights([], 7).counts.range_days == 7
    with pytest.raises(InvalidRange) as excinfo:
        _cohort([], range_days=7)
    assert excinfo.value.allowed == (30, 90)


def test_cohort_below_threshold_returns_fallback():
    rows = _rows(*([8] * 24))
    result = _cohort(rows, total=24)

    assert result.computed is False
    assert result.patterns == list(COHORT_FALLBACK_PATTERNS)
    assert result.disclaimer == COHORT_DISCLAIMER
    assert result.high_pain_pct is None
    assert result.low_energy_pct is None
    assert result.top_tag is None
    assert result.meta.cohort_size is None
    assert result.meta.cached is False


def test_cohort_at_threshold_computes_percentages():
    rows = [{"pain_intensity": 7, "energy_level": "low"} for _ in range(10)]
    rows += [{"pain_intensity": 2, "energy_level": "good", "tags": ["acne"]} for _ in range(15)]
    result = _cohort(rows, total=25)

    assert result.computed is True
    assert result.high_pain_pct == 40
    assert result.low_energy_pct == 40
    assert result.top_tag == "acne"
    assert "40%" in result.patterns[0]
    assert "acne" in result.patterns[2]
    assert result.meta.cohort_size is None


def test_cohort_percentages_round_half_up():
    rows = [{"pain_intensity": 9} for _ in range(5)] + [{} for _ in range(35)]
    assert _cohort(rows).high_pain_pct == 13


def test_cohort_without_tags_uses_generic_sentence():
    result = _cohort([{"pain_intensity": 1} for _ in range(30)])

    assert result.top_tag is None
    assert result.patterns[2].startswith("Symptom tags often cluster")


def test_cohort_refuses_rows_that_may_include_requester():
    rows = [{"pain_intensity": 9} for _ in range(30)]
    result = _cohort(rows, requester_excluded=False)

    assert result.computed is False
    assert result.high_pain_pct is None


def test_cohort_meta_resolves_window_when_dates_omitted():
    result = _cohort([], range_days=90)

    assert result.meta.date_to == TODAY
    assert result.meta.date_from == TODAY - timedelta(days=89)
    assert result.meta.timezone == "UTC"
    assert result.meta.range_days == 90


def test_cohort_top_tag_prefers_earlier_candidate_on_tie():
    rows = [{"tags": ["cramps"]}, {"tags": ["bloating"]}, {"tags": ["Cramps", "cramps"]}]

    assert cohort_top_tag(rows, ["bloating", "cramps"]) == "cramps"
    assert cohort_top_tag(rows[:2], ["bloating", "cramps"]) == "bloating"
    assert cohort_top_tag(rows[:2], ["cramps", "bloating"]) == "cramps"
    assert cohort_top_tag(rows, ["acne"]) is None


def test_cohort_top_tag_ignores_tags_outside_candidates():
    rows = [{"tags": ["fatigue"]} for _ in range(5)] + [{"tags": ["acne"]}]
    assert cohort_top_tag(rows) == "acne"
    assert cohort_top_tag(rows, ("fatigue", "acne")) == "fatigue"


def test_resolve_date_range_truncates_in_canonical_timezone():
    late_utc = datetime(2025, 3, 10, 23, 30, tzinfo=timezone.utc)

    assert resolve_date_range(30, now=late_utc, tz=UTC) == (date(2025, 2, 9), date(2025, 3, 10))
    assert resolve_date_range(30, now=late_utc, tz=ZoneInfo("Asia/Tokyo")) == (
        date(2025, 2, 10),
        date(2025, 3, 11),
    )
    assert resolve_date_range(7, now=late_utc, tz=UTC)[0] == date(2025, 3, 4)


def test_field_average_matches_engine_rounding():
    assert field_average(_rows(1, 2, 2, None), "pain_intensity") == 1.67
    assert field_average([], "pain_intensity") is None


def test_naive_now_is_placed_in_canonical_timezone():
    tokyo = ZoneInfo("Asia/Tokyo")
    naive = datetime(2025, 3, 31, 12, 0)

    assert local_now(naive, tokyo) == datetime(2025, 3, 31, 12, 0, tzinfo=tokyo)
    assert local_now(naive, tokyo).utcoffset() == timedelta(hours=9)

    result = compute_cohort_patterns([], total_logs_in_range=0, range_days=30, now=naive, tz=UTC)
    assert result.meta.generated_at.utcoffset() == timedelta(0)
