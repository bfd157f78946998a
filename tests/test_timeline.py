from __future__ import annotations

from datetime import timedelta

import pytest

from app.errors import ConfigurationError, NoTracksError
from conftest import T0, make_track
from core.models import GeoPoint, Track
from core.timeline import AnimationTimeline, frame_count_for


def _track(seconds, name="t") -> Track:
    return Track(
        points=[GeoPoint(1.0, 1.0, T0 + timedelta(seconds=s)) for s in seconds], name=name
    )


def _keys(batch):
    return [(tp.track_index, tp.point_index) for tp in batch]


def test_merge_orders_by_time_with_stable_ties() -> None:
    timeline = AnimationTimeline.from_tracks([_track([0, 10, 20, 30, 40]), _track([0, 5, 40])])
    assert _keys(timeline.points) == [
        (0, 0), (1, 0), (1, 1), (0, 1), (0, 2), (0, 3), (0, 4), (1, 2),
    ]
    assert timeline.track_lengths == [5, 3]
    assert timeline.span == 40.0


def test_partition_by_equal_time_slices() -> None:
    timeline = AnimationTimeline.from_tracks([_track([0, 10, 20, 30, 40]), _track([0, 5, 40])])
    batches = timeline.partition(4)
    assert len(batches) == 4
    assert _keys(batches[0]) == [(0, 0), (1, 0), (1, 1)]
    assert _keys(batches[1]) == [(0, 1)]
    assert _keys(batches[2]) == [(0, 2)]
    assert _keys(batches[3]) == [(0, 3), (0, 4), (1, 2)]


def test_partition_covers_every_point_once_in_order() -> None:
    tracks = [
        make_track([(1.0, 1.0)] * 50, start_s=0, step_s=1),
        make_track([(2.0, 2.0)] * 7, start_s=13, step_s=0.1),
        make_track([(3.0, 3.0)], start_s=33),
    ]
    timeline = AnimationTimeline.from_tracks(tracks)
    for n in (1, 3, 17, 200):
        batches = timeline.partition(n)
        assert len(batches) == n
        flattened = [tp for batch in batches for tp in batch]
        assert flattened == timeline.points
        times = [tp.seconds for tp in flattened]
        assert times == sorted(times)
        non_empty = [b for b in batches if b]
        for earlier, later in zip(non_empty, non_empty[1:]):
            assert earlier[-1].seconds <= later[0].seconds


def test_burst_of_samples_shares_one_frame() -> None:
    burst = _track([0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6])
    sparse = _track([50, 100])
    batches = AnimationTimeline.from_tracks([burst, sparse]).partition(10)
    assert len(batches[0]) == 7
    assert len(batches[5]) == 1
    assert len(batches[9]) == 1


def test_zero_span_puts_everything_in_first_frame() -> None:
    timeline = AnimationTimeline.from_tracks([_track([5, 5]), _track([5])])
    batches = timeline.partition(6)
    assert len(batches[0]) == 3
    assert all(not batch for batch in batches[1:])


def test_single_point_track_lands_in_one_frame() -> None:
    timeline = AnimationTimeline.from_tracks([_track([0, 100]), _track([42])])
    batches = timeline.partition(10)
    owners = [i for i, batch in enumerate(batches) if any(tp.track_index == 1 for tp in batch)]
    assert owners == [4]


def test_empty_timeline_rejected() -> None:
    with pytest.raises(NoTracksError):
        AnimationTimeline.from_tracks([])
    with pytest.raises(ConfigurationError):
        AnimationTimeline.from_tracks([_track([0])]).partition(0)


def test_frame_count_for() -> None:
    assert frame_count_for(30, 2) == 60
    assert frame_count_for(0.1, 1) == 1
    with pytest.raises(ConfigurationError):
        frame_count_for(0, 10)
    with pytest.raises(ConfigurationError):
        frame_count_for(24, -1)
