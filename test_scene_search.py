#!/usr/bin/env python3
"""
Tests for the descending scene-threshold search and the fallback tiers.

A recording stub stands in for ffmpeg: it decides the frame count from the
request it receives, so no video decoder is needed.
"""

import pytest

from frame_extractor import ExtractionOutcome, ExtractionRequest
from scene_search import (
    ExtractionEmpty,
    SceneThresholdSearch,
    SearchResult,
    parse_scene_range,
    parse_scene_threshold,
    scene_candidates,
)


class StubExtractor:
    """Records every request and answers with ``frames_for(request)`` frames."""

    def __init__(self, frames_for, error=None):
        self.frames_for = frames_for
        self.error = error
        self.requests = []

    def extract(self, request):
        self.requests.append(request)
        return ExtractionOutcome.from_count(self.frames_for(request), self.error)

    @property
    def thresholds(self):
        return [r.scene_threshold for r in self.requests]


def make_request(**kwargs):
    defaults = dict(video_path='clip.mp4', output_dir='/tmp/frames', prefix='frame_',
                    fps='5', scale='1280:-1')
    defaults.update(kwargs)
    return ExtractionRequest(**defaults)


def only_when_scene_at_most(limit):
    def frames_for(request):
        if request.scene_threshold is not None and request.scene_threshold <= limit:
            return 12
        return 0
    return frames_for


class TestCandidates:

    def test_descending_inclusive_range(self):
        assert scene_candidates(0.05, 0.10, 0.01) == [0.1, 0.09, 0.08, 0.07, 0.06, 0.05]

    def test_reversed_bounds_are_swapped(self):
        assert scene_candidates(0.10, 0.05, 0.01) == scene_candidates(0.05, 0.10, 0.01)

    def test_step_not_dividing_range(self):
        assert scene_candidates(0.05, 0.10, 0.03) == [0.1, 0.07]

    def test_single_point_range(self):
        assert scene_candidates(0.3, 0.3, 0.01) == [0.3]

    @pytest.mark.parametrize('step', [0, -0.01, 'abc', 'nan'])
    def test_step_must_be_positive_number(self, step):
        with pytest.raises(ValueError):
            scene_candidates(0.05, 0.10, step)


class TestParsing:

    def test_range_in_either_order(self):
        assert parse_scene_range('0.05~0.10') == (0.05, 0.1)
        assert parse_scene_range('0.10~0.05') == (0.05, 0.1)

    def test_single_threshold(self):
        assert parse_scene_threshold('0.3') == 0.3

    @pytest.mark.parametrize('value', ['abc~0.1', '0.1~', '1.5', '-0.2', 'nan'])
    def test_invalid_values(self, value):
        with pytest.raises(ValueError):
            if '~' in value:
                parse_scene_range(value)
            else:
                parse_scene_threshold(value)

    def test_range_requires_separator(self):
        with pytest.raises(ValueError):
            parse_scene_range('0.1')


class TestSearch:

    def test_selects_first_threshold_with_frames(self):
        extractor = StubExtractor(only_when_scene_at_most(0.07))
        result = SceneThresholdSearch(extractor, {}).search(make_request(), 0.05, 0.10, 0.01)

        assert result.threshold == 0.07
        assert result.frame_count == 12
        assert extractor.thresholds == [0.1, 0.09, 0.08, 0.07]

    def test_search_keeps_fps_and_scale(self):
        extractor = StubExtractor(only_when_scene_at_most(0.1))
        SceneThresholdSearch(extractor, {}).search(make_request(unique=True), 0.05, 0.10, 0.01)

        request = extractor.requests[0]
        assert request.fps == '5'
        assert request.scale == '1280:-1'
        assert request.filter_graph() == "select='gt(scene,0.1)',fps=5,scale=1280:-1:flags=lanczos"

    def test_no_candidate_succeeds(self):
        extractor = StubExtractor(lambda request: 0)
        result = SceneThresholdSearch(extractor, {}).search(make_request(), 0.05, 0.10, 0.01)

        assert result.threshold is None
        assert not result.outcome.has_frames
        assert len(extractor.requests) == 6


class TestFallbacks:

    def test_range_success_needs_no_fallback(self):
        extractor = StubExtractor(only_when_scene_at_most(0.07))
        result = SceneThresholdSearch(extractor, {}).extract_with_fallback(
            make_request(), (0.05, 0.10), 0.01
        )
        assert result.tier == SearchResult.SCENE_RANGE
        assert result.threshold == 0.07

    def test_filters_disabled_tier_accepted_without_minimal_tier(self):
        def frames_for(request):
            if request.scene_threshold is None and not request.unique:
                return 30
            return 0

        extractor = StubExtractor(frames_for)
        result = SceneThresholdSearch(extractor, {}).extract_with_fallback(
            make_request(), (0.05, 0.10), 0.01
        )

        assert result.tier == SearchResult.NO_FILTERS
        assert result.frame_count == 30
        assert len(extractor.requests) == 7
        last = extractor.requests[-1]
        assert last.scene_threshold is None
        assert last.filter_graph() == "fps=5,scale=1280:-1:flags=lanczos"
        assert all(r.scale != '-1:720' for r in extractor.requests)

    def test_unique_primary_falls_back_to_unfiltered(self):
        extractor = StubExtractor(lambda request: 0 if request.unique else 4)
        result = SceneThresholdSearch(extractor, {}).extract_with_fallback(make_request(unique=True))

        assert result.tier == SearchResult.NO_FILTERS
        assert [r.unique for r in extractor.requests] == [True, False]

    def test_minimal_tier(self):
        extractor = StubExtractor(lambda request: 2 if request.scale == '-1:720' else 0)
        result = SceneThresholdSearch(extractor, {}).extract_with_fallback(
            make_request(scene_threshold=0.4)
        )

        assert result.tier == SearchResult.MINIMAL
        assert len(extractor.requests) == 3
        assert extractor.requests[-1].filter_graph() == "fps=1,scale=-1:720:flags=lanczos"

    def test_minimal_tier_uses_config(self):
        extractor = StubExtractor(lambda request: 2 if request.fps == '2' else 0)
        config = {'minimal_fallback_fps': 2, 'minimal_fallback_scale': '-1:480'}
        result = SceneThresholdSearch(extractor, config).extract_with_fallback(make_request())

        assert result.tier == SearchResult.MINIMAL
        assert extractor.requests[-1].scale == '-1:480'

    def test_primary_single_threshold(self):
        extractor = StubExtractor(lambda request: 9)
        result = SceneThresholdSearch(extractor, {}).extract_with_fallback(
            make_request(scene_threshold=0.3)
        )

        assert result.tier == SearchResult.PRIMARY
        assert result.threshold == 0.3
        assert len(extractor.requests) == 1

    def test_all_tiers_empty_raises(self):
        extractor = StubExtractor(lambda request: 0)
        with pytest.raises(ExtractionEmpty) as excinfo:
            SceneThresholdSearch(extractor, {'scene_step': 0.05}).extract_with_fallback(
                make_request(), (0.05, 0.10)
            )

        assert excinfo.value.video_path == 'clip.mp4'
        # 0.10, 0.05, then the two fallback tiers
        assert len(extractor.requests) == 4

    def test_frame_count_wins_over_failed_invocation(self):
        extractor = StubExtractor(lambda request: 3, error='ffmpeg crashed')
        result = SceneThresholdSearch(extractor, {}).extract_with_fallback(make_request())

        assert result.tier == SearchResult.PRIMARY
        assert result.outcome.status == ExtractionOutcome.FAILED
        assert result.frame_count == 3
