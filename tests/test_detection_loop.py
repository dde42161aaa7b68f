"""Tests for the polling detection loop."""
import time

import numpy as np
import pytest

from conftest import BlockingDetector, FakeCamera, FakeDetector, one_hot
from veriattend.attendance.detection_loop import DetectionLoop
from veriattend.attendance.errors import NoCameraAccess
from veriattend.recognition.face_matcher import DescriptorMatcher, KnownDescriptor


def _matcher():
    return DescriptorMatcher([
        KnownDescriptor(member_id="ada", name="Ada", descriptor=np.array(one_hot(0))),
        KnownDescriptor(member_id="ben", name="Ben", descriptor=np.array(one_hot(1))),
    ])


def _wait_until(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _loop(camera=None, detector=None, matcher=None, interval=60.0):
    matched = []
    matcher = matcher if matcher is not None else _matcher()
    loop = DetectionLoop(
        camera=camera or FakeCamera(),
        detector=detector or FakeDetector(),
        matcher_provider=lambda: matcher,
        on_match=matched.append,
        interval=interval,
    )
    return loop, matched


def test_run_once_forwards_only_known_faces():
    detector = FakeDetector([one_hot(0), one_hot(7), None, one_hot(1)])
    loop, matched = _loop(detector=detector)

    assert loop.run_once() == 2
    assert matched == ["ada", "ben"]
    assert loop.stats["detections"] == 4
    assert loop.stats["matches"] == 2


def test_run_once_without_frame_skips_detection():
    detector = FakeDetector([one_hot(0)])
    loop, matched = _loop(camera=FakeCamera(frame=None), detector=detector)

    assert loop.run_once() == 0
    assert detector.calls == 0
    assert matched == []


def test_run_once_without_descriptors_matches_nothing():
    matched = []
    loop = DetectionLoop(FakeCamera(), FakeDetector([one_hot(0)]), lambda: None, matched.append, 60.0)
    assert loop.run_once() == 0
    assert matched == []


def test_start_fails_without_camera():
    camera = FakeCamera(opens=False)
    loop, _ = _loop(camera=camera)

    with pytest.raises(NoCameraAccess):
        loop.start()
    assert loop.running is False


def test_started_loop_forwards_matches_and_cancel_releases_camera():
    camera = FakeCamera()
    loop, matched = _loop(camera=camera, detector=FakeDetector([one_hot(1)]), interval=0.05)

    handle = loop.start()
    assert camera.open_calls == 1
    assert _wait_until(lambda: len(matched) >= 2)
    assert set(matched) == {"ben"}

    handle.cancel()
    handle.cancel()
    assert handle.cancelled
    assert camera.release_calls == 1


def test_tick_is_skipped_while_a_pass_is_in_flight():
    detector = BlockingDetector([one_hot(0)])
    loop, matched = _loop(detector=detector)
    handle = loop.start()
    try:
        assert detector.entered.wait(timeout=3.0)
        assert loop.tick() is False
        assert loop.stats["skipped_ticks"] >= 1
        assert detector.calls == 0

        detector.release.set()
        assert _wait_until(loop.tick)
        assert loop.wait_for_pass(timeout=3.0) == 1
        assert matched == ["ada", "ada"]
    finally:
        detector.release.set()
        handle.cancel()


def test_pass_errors_are_counted_and_loop_keeps_running():
    class ExplodingDetector(FakeDetector):
        def detect_faces(self, frame):
            raise RuntimeError("model crashed")

    loop, _ = _loop(detector=ExplodingDetector(), interval=0.05)
    handle = loop.start()
    try:
        assert _wait_until(lambda: loop.stats["errors"] >= 2)
        assert loop.running
    finally:
        handle.cancel()


def test_stop_before_start_is_noop():
    camera = FakeCamera()
    loop, _ = _loop(camera=camera)
    loop.stop()
    assert camera.release_calls == 0
    assert loop.get_statistics()["running"] is False
