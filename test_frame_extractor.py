#!/usr/bin/env python3
"""
Tests for ffmpeg request building and outcome reporting.

ffmpeg itself is never run: streams are compiled to argument lists and the
runner is swapped out where an invocation is needed.
"""

import os

import ffmpeg
import pytest

from frame_extractor import ExtractionOutcome, ExtractionRequest, FfmpegExtractor, count_frames


def make_request(tmp_path, **kwargs):
    defaults = dict(video_path='input.mp4', output_dir=str(tmp_path), prefix='frame_')
    defaults.update(kwargs)
    return ExtractionRequest(**defaults)


class TestFilterGraph:

    def test_empty_by_default(self, tmp_path):
        assert make_request(tmp_path).filter_graph() == ''

    def test_scene_select_with_fps_and_scale(self, tmp_path):
        request = make_request(tmp_path, scene_threshold=0.08, fps='5', scale='1280:-1')
        assert request.filter_graph() == "select='gt(scene,0.08)',fps=5,scale=1280:-1:flags=lanczos"

    def test_unique_uses_mpdecimate(self, tmp_path):
        request = make_request(tmp_path, unique=True, fps='2')
        assert request.filter_graph() == "mpdecimate=hi=768:lo=128:frac=0.33,fps=2"

    def test_scene_takes_precedence_over_unique(self, tmp_path):
        request = make_request(tmp_path, unique=True, scene_threshold=0.3)
        assert request.filter_graph() == "select='gt(scene,0.3)'"


class TestRequest:

    def test_output_pattern(self, tmp_path):
        request = make_request(tmp_path, prefix='clip_frame_', frame_format='webp')
        assert request.output_pattern == os.path.join(str(tmp_path), 'clip_frame_%06d.webp')

    def test_derive_replaces_fields_only_on_copy(self, tmp_path):
        request = make_request(tmp_path, scene_threshold=0.2, fps='3')
        derived = request.derive(scene_threshold=None)

        assert derived.scene_threshold is None
        assert derived.fps == '3'
        assert request.scene_threshold == 0.2

    def test_derive_rejects_unknown_fields(self, tmp_path):
        with pytest.raises(TypeError):
            make_request(tmp_path).derive(bitrate='5M')

    def test_rejects_lossy_formats(self, tmp_path):
        with pytest.raises(ValueError):
            make_request(tmp_path, frame_format='jpg')


class TestBuildStream:

    def test_png_arguments(self, tmp_path):
        request = make_request(tmp_path, start='00:00:05', duration='10', fps='5')
        args = FfmpegExtractor({'ffmpeg_loglevel': 'warning'}).build_stream(request).compile()

        assert args[0] == 'ffmpeg'
        assert args.index('-ss') < args.index('-i') < args.index('-t')
        assert args[args.index('-hwaccel') + 1] == 'auto'
        assert args[args.index('-vf') + 1] == 'fps=5'
        assert args[args.index('-vsync') + 1] == 'vfr'
        assert args[args.index('-f') + 1] == 'image2'
        assert args[args.index('-pix_fmt') + 1] == 'rgb24'
        assert args[args.index('-compression_level') + 1] == '9'
        assert args[args.index('-pred') + 1] == 'mixed'
        assert args[args.index('-loglevel') + 1] == 'warning'
        assert request.output_pattern in args
        assert '-y' in args
        assert '-lossless' not in args

    def test_webp_arguments(self, tmp_path):
        request = make_request(tmp_path, frame_format='webp')
        args = FfmpegExtractor({}).build_stream(request).compile()

        assert args[args.index('-lossless') + 1] == '1'
        assert '-compression_level' not in args
        assert '-vf' not in args
        assert '-ss' not in args
        assert '-t' not in args


class TestExtract:

    def test_counts_frames_written(self, tmp_path):
        extractor = FfmpegExtractor({})
        request = make_request(tmp_path / 'out')

        def fake_run(stream):
            for i in range(1, 4):
                open(os.path.join(request.output_dir, f"frame_{i:06d}.png"), 'wb').close()

        extractor._run = fake_run
        outcome = extractor.extract(request)

        assert outcome.status == ExtractionOutcome.SUCCESS
        assert outcome.frame_count == 3
        assert outcome.has_frames

    def test_ffmpeg_error_becomes_failed_outcome(self, tmp_path):
        extractor = FfmpegExtractor({})

        def failing_run(stream):
            raise ffmpeg.Error('ffmpeg', b'', b'Invalid data found when processing input')

        extractor._run = failing_run
        outcome = extractor.extract(make_request(tmp_path))

        assert outcome.status == ExtractionOutcome.FAILED
        assert outcome.frame_count == 0
        assert 'Invalid data' in outcome.error
        assert not outcome.has_frames

    def test_missing_binary_becomes_failed_outcome(self, tmp_path):
        extractor = FfmpegExtractor({})

        def missing_binary(stream):
            raise FileNotFoundError(2, 'No such file or directory', 'ffmpeg')

        extractor._run = missing_binary
        assert extractor.extract(make_request(tmp_path)).status == ExtractionOutcome.FAILED

    def test_zero_frames_is_empty(self, tmp_path):
        extractor = FfmpegExtractor({})
        extractor._run = lambda stream: None
        assert extractor.extract(make_request(tmp_path)).status == ExtractionOutcome.EMPTY


def test_count_frames_respects_prefix_and_format(tmp_path):
    for name in ('a_frame_000001.png', 'a_frame_000002.png', 'b_frame_000001.png', 'a_frame_000003.webp'):
        (tmp_path / name).write_bytes(b'')
    assert count_frames(str(tmp_path), 'a_frame_', 'png') == 2
    assert count_frames(str(tmp_path), 'a_frame_', 'webp') == 1
    assert count_frames(str(tmp_path), 'c_', 'png') == 0
