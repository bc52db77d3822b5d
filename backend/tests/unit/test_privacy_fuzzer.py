import random

from hexchat.domain.geo.buckets import Coordinate
from hexchat.domain.geo.fuzz import PrivacyFuzzer


def test_fuzz_stays_within_band():
    fuzzer = PrivacyFuzzer(offset_deg=0.009, marker_offset_deg=0.0025, rng=random.Random(7))
    origin = Coordinate(39.9, 116.4)
    for _ in range(200):
        moved = fuzzer.fuzz(origin)
        assert abs(moved.lat - origin.lat) <= 0.009
        assert abs(moved.lng - origin.lng) <= 0.009


def test_micro_fuzz_uses_smaller_band():
    fuzzer = PrivacyFuzzer(offset_deg=0.009, marker_offset_deg=0.0025, rng=random.Random(3))
    origin = Coordinate(10.0, 20.0)
    for _ in range(200):
        moved = fuzzer.micro_fuzz(origin)
        assert abs(moved.lat - origin.lat) <= 0.0025
        assert abs(moved.lng - origin.lng) <= 0.0025


def test_fuzz_actually_moves_the_point():
    fuzzer = PrivacyFuzzer(rng=random.Random(11))
    origin = Coordinate(51.5, -0.12)
    assert fuzzer.fuzz(origin) != origin


def test_fuzz_is_clamped_at_the_poles_and_antimeridian():
    fuzzer = PrivacyFuzzer(offset_deg=0.5, rng=random.Random(1))
    for _ in range(100):
        moved = fuzzer.fuzz(Coordinate(89.9, 179.9))
        assert -90.0 <= moved.lat <= 90.0
        assert -180.0 <= moved.lng <= 180.0
