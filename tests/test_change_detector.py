from types import SimpleNamespace

from tourwatch.schemas.monitoring import NotifyConditions
from tourwatch.services.change_detector import classify, is_price_drop
from tourwatch.services.offers import RankedCandidate

from conftest import make_candidate


def ranked(external_id, price, score=90, availability="available"):
    return RankedCandidate(
        candidate=make_candidate(external_id, price, availability=availability),
        score=score,
    )


def snapshot(candidate_id, price, availability="available"):
    return SimpleNamespace(candidate_id=candidate_id, price=price, availability=availability)


def test_first_cycle_only_produces_new():
    offers = [ranked("a", 100000), ranked("b", 90000)]

    changes = classify(offers, {}, NotifyConditions(price_below_threshold=200000))

    assert {c.reason for c in changes} == {"new"}
    assert len(changes) == 2


def test_unchanged_price_produces_nothing():
    offers = [ranked("a", 100000)]
    previous = [snapshot("leveltravel:a", 100000)]

    assert classify(offers, previous, NotifyConditions()) == []


def test_new_candidate_detected_once():
    previous = [snapshot("leveltravel:a", 100000)]
    offers = [ranked("a", 100000), ranked("b", 120000)]

    changes = classify(offers, previous, NotifyConditions())

    assert len(changes) == 1
    assert changes[0].reason == "new"
    assert changes[0].ranked.candidate_id == "leveltravel:b"


def test_new_tours_can_be_disabled():
    changes = classify([ranked("a", 100000)], {}, NotifyConditions(notify_new_tours=False))
    assert changes == []


def test_price_drop_by_percent():
    previous = [snapshot("leveltravel:a", 100000)]
    changes = classify([ranked("a", 89000)], previous, NotifyConditions(price_drop_percent=10))

    assert len(changes) == 1
    change = changes[0]
    assert change.reason == "price_drop"
    assert change.previous_price == 100000
    assert change.price_delta == 11000


def test_small_drop_below_percent_is_ignored():
    previous = [snapshot("leveltravel:a", 100000)]
    assert classify([ranked("a", 95000)], previous, NotifyConditions(price_drop_percent=10)) == []


def test_price_drop_by_amount_or_threshold():
    conditions = NotifyConditions(price_drop_percent=None, price_drop_amount=3000)
    assert is_price_drop(100000, 97000, conditions)
    assert not is_price_drop(100000, 98000, conditions)

    threshold = NotifyConditions(price_drop_percent=None, price_below_threshold=90000)
    assert is_price_drop(95000, 90000, threshold)
    assert not is_price_drop(90000, 90000, threshold)
    assert not is_price_drop(80000, 85000, threshold)
    assert not is_price_drop(95000, 91000, threshold)


def test_price_increase_is_not_a_drop():
    previous = [snapshot("leveltravel:a", 100000)]
    assert classify([ranked("a", 120000)], previous, NotifyConditions(price_drop_amount=1)) == []


def test_min_match_score_filters_before_classification():
    offers = [ranked("good", 100000, score=85), ranked("weak", 100000, score=60)]

    changes = classify(offers, {}, NotifyConditions(min_match_score=70))

    assert [c.ranked.candidate.external_id for c in changes] == ["good"]


def test_availability_change():
    previous = [snapshot("leveltravel:a", 100000, availability="sold_out")]

    changes = classify([ranked("a", 100000)], previous, NotifyConditions())

    assert len(changes) == 1
    assert changes[0].reason == "availability_change"
    assert changes[0].previous_availability == "sold_out"

    disabled = NotifyConditions(notify_availability_change=False)
    assert classify([ranked("a", 100000)], previous, disabled) == []


def test_snapshot_mapping_is_accepted():
    previous = {"leveltravel:a": snapshot("leveltravel:a", 100000)}
    assert classify([ranked("a", 100000)], previous, NotifyConditions()) == []
