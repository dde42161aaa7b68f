"""Tests for descriptor matching and the registry-backed matcher cache."""
import numpy as np
import pytest

from conftest import one_hot
from veriattend.attendance.errors import MatcherUnavailable
from veriattend.recognition.face_matcher import DescriptorMatcher, KnownDescriptor, MatcherCache


def _known(member_id, index):
    return KnownDescriptor(member_id=member_id, name=member_id, descriptor=np.array(one_hot(index)))


def test_empty_corpus_is_unavailable():
    with pytest.raises(MatcherUnavailable):
        DescriptorMatcher([])


def test_best_match_below_tolerance():
    matcher = DescriptorMatcher([_known("a", 0), _known("b", 1)], tolerance=0.6)

    query = np.array(one_hot(1))
    query[0] = 0.2
    match = matcher.match(query)
    assert match.member_id == "b"
    assert match.distance == pytest.approx(0.2)
    assert match.confidence == pytest.approx(0.8)


def test_unknown_face_returns_none():
    matcher = DescriptorMatcher([_known("a", 0)], tolerance=0.6)
    assert matcher.match(one_hot(5)) is None
    assert matcher.match(None) is None


def test_distance_equal_to_tolerance_is_rejected():
    matcher = DescriptorMatcher([_known("a", 0)], tolerance=0.5)
    query = np.array(one_hot(0))
    query[1] = 0.5
    assert matcher.match(query) is None


def test_find_similar_faces_orders_by_distance():
    matcher = DescriptorMatcher([_known("a", 0), _known("b", 1), _known("c", 2)])
    query = np.array(one_hot(2)) * 0.9
    assert [m.member_id for m in matcher.find_similar_faces(query, top_k=2)][0] == "c"


def test_recognition_statistics_track_matches():
    matcher = DescriptorMatcher([_known("a", 0)])
    matcher.match(one_hot(0))
    stats = matcher.get_recognition_statistics()
    assert stats["total_known_faces"] == 1
    assert stats["recent_recognitions_count"] == 1
    assert matcher.known_faces["a"].recognition_count == 1


def test_cache_rebuilds_when_registry_changes(registry):
    cache = MatcherCache(registry)
    assert cache.get() is None

    ada = registry.add_member({"name": "Ada Obi", "role": "student", "matric_number": "CSC/001",
                               "face_descriptor": one_hot(0)})
    first = cache.get()
    assert len(first) == 1
    assert cache.get() is first

    registry.add_member({"name": "Ben Eze", "role": "student", "matric_number": "CSC/002",
                         "face_descriptor": one_hot(1)})
    second = cache.get()
    assert second is not first
    assert len(second) == 2
    assert second.match(one_hot(0)).member_id == ada.id
