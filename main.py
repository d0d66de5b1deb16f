"""Main application entry point for the video-to-frames extractor."""

import glob
import logging
import os
import re
import shutil
import sys
from typing import Dict, List, Optional, Tuple

import click

from config import Config
from frame_deduplicator import FrameDeduplicator, parse_dedupe_mode
from frame_extractor import ExtractionRequest, FfmpegExtractor, count_frames
from image_optimizer import ImageOptimizer
from scene_search import (
    ExtractionEmpty,
    SceneThresholdSearch,
    parse_scene_range,
    parse_scene_step,
    parse_scene_threshold,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def make_unique_dir(base: str, parent: str) -> str:
    """``parent/base``, or ``parent/base-2``, ``-3``... if that already exists."""
    directory = os.path.join(parent, base)
    n = 2
    while os.path.exists(directory):
        directory = os.path.join(parent, f"{base}-{n}")
        n += 1
    return directory


def make_unique_flat_prefix(base: str, output_dir: str) -> str:
    """``base_``, or ``base-2_``, ``-3``... while files ``base_*`` already exist."""
    candidate = base
    n = 2
    while glob.glob(os.path.join(glob.escape(output_dir), f"{glob.escape(candidate)}_*")):
        candidate = f"{base}-{n}"
        n += 1
    return f"{candidate}_"


def make_auto_prefix_for_flat(name: str, output_dir: str) -> str:
    """Per-video prefix for flat output that no existing frame already uses."""
    return make_unique_flat_prefix(re.sub(r'[^a-zA-Z0-9._-]', '_', name), output_dir)


def normalize_user_prefix(prefix: Optional[str]) -> str:
    if not prefix:
        return ""
    return prefix if prefix.endswith('_') else f"{prefix}_"


class VideoToFrames:
    """Main application class: extraction, optimisation and dedupe per video."""

    def __init__(self, config_dict: Dict, extractor=None):
        self.config = config_dict
        self.extractor = extractor or FfmpegExtractor(config_dict)
        self.scene_search = SceneThresholdSearch(self.extractor, config_dict)
        self.image_optimizer = ImageOptimizer(config_dict)
        self.deduplicator = FrameDeduplicator(config_dict)

    def process_video(self, video_path: str, output_root: str) -> int:
        """Process one video; returns the final frame count.

        Raises ExtractionEmpty when no frames could be extracted and
        OSError when frames cannot be written or deleted.
        """
        name = os.path.splitext(os.path.basename(video_path))[0]
        flat = self.config.get('flat', False)

        if flat:
            output_dir = output_root
        else:
            output_dir = make_unique_dir(name, output_root)
        os.makedirs(output_dir, exist_ok=True)

        video_prefix = self._resolve_prefix(name, output_root)
        if flat:
            logger.info(f"   Prefix: {video_prefix or '<empty>'}")
        prefix = f"{video_prefix}{self.config.get('frame_name', 'frame_')}"
        frame_format = self.config.get('frame_format', 'png')

        request = ExtractionRequest(
            video_path=video_path,
            output_dir=output_dir,
            prefix=prefix,
            frame_format=frame_format,
            start=self.config.get('start'),
            duration=self.config.get('duration'),
            fps=self.config.get('fps'),
            scale=self.config.get('scale'),
            unique=self.config.get('unique', False),
            mpdecimate_filter=self.config.get('mpdecimate_filter', Config.MPDECIMATE_FILTER)
        )

        scene = self.config.get('scene')
        scene_range = None
        if scene:
            scene = str(scene)
            if '~' in scene:
                scene_range = parse_scene_range(scene)
            else:
                request.scene_threshold = parse_scene_threshold(scene)

        result = self.scene_search.extract_with_fallback(
            request, scene_range, self.config.get('scene_step', Config.SCENE_STEP)
        )
        logger.info(f"   Frames extracted: {result.frame_count} ({result.tier})")

        if frame_format == 'png' and self.config.get('optimize_png', True):
            self.image_optimizer.optimize_directory(output_dir, prefix)

        dedupe_mode = self.config.get('dedupe')
        if dedupe_mode:
            policy = self.deduplicator.build_policy(dedupe_mode)
            self.deduplicator.dedupe_directory(output_dir, policy, prefix)

        final_count = count_frames(output_dir, prefix, frame_format)
        logger.info(f"   Final frames: {final_count} -> {output_dir}")
        return final_count

    def process_batch(self, videos: List[str], output_root: str) -> List[Tuple[str, Optional[int]]]:
        """Process videos in order; a failed video is logged and the batch continues.

        Returns (video, final frame count) pairs, with None for videos that
        were skipped or failed.
        """
        os.makedirs(output_root, exist_ok=True)
        results = []

        for video_path in videos:
            if not os.path.isfile(video_path):
                logger.warning(f"Not found, skipping: {video_path}")
                results.append((video_path, None))
                continue

            logger.info(f">> Processing: {video_path}")
            try:
                results.append((video_path, self.process_video(video_path, output_root)))
            except ExtractionEmpty as e:
                logger.error(f"   Failed: {e}")
                results.append((video_path, None))
            except OSError as e:
                logger.error(f"   Error processing {video_path}: {e}")
                results.append((video_path, None))

        return results

    def _resolve_prefix(self, name: str, output_root: str) -> str:
        user_prefix = normalize_user_prefix(self.config.get('prefix'))
        flat = self.config.get('flat', False)
        if user_prefix and flat:
            # Frames from earlier videos in the shared folder keep their names
            unique_prefix = make_unique_flat_prefix(user_prefix[:-1], output_root)
            if unique_prefix != user_prefix:
                logger.warning(f"Prefix {user_prefix} already used in {output_root}, using {unique_prefix}")
            return unique_prefix
        if user_prefix:
            return user_prefix
        if flat:
            return make_auto_prefix_for_flat(name, output_root)
        return ""


def _load_config(config_path: Optional[str]) -> Dict:
    config_dict = Config.get_default_config()
    if config_path:
        if not os.path.exists(config_path):
            raise click.BadParameter(f"Config file not found: {config_path}", param_hint="--config")
        config_dict.update(Config.flatten(Config.load_from_file(config_path)))
    return config_dict


def _validate_settings(config_dict: Dict) -> None:
    """Reject bad dedupe/scene settings before any video is touched."""
    if config_dict.get('dedupe'):
        try:
            parse_dedupe_mode(str(config_dict['dedupe']))
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--dedupe")

    scene = config_dict.get('scene')
    if scene:
        try:
            if '~' in str(scene):
                parse_scene_range(str(scene))
            else:
                parse_scene_threshold(str(scene))
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--scene")

    if config_dict.get('scene_step') is not None:
        try:
            parse_scene_step(config_dict['scene_step'])
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--scene-step")

    if config_dict.get('frame_format', 'png') not in ('png', 'webp'):
        raise click.BadParameter(f"frame_format must be png or webp, got {config_dict['frame_format']}")


def _report(results: List[Tuple[str, Optional[int]]]) -> None:
    succeeded = [video for video, count in results if count is not None]
    click.echo(f"{'✅' if succeeded else '❌'} {len(succeeded)}/{len(results)} video(s) produced frames")
    if not succeeded:
        sys.exit(1)


@click.group()
def cli():
    """Extract lossless frames from videos and remove redundant ones."""
    pass

@click.command()
@click.option('--out', '-o', 'output', required=True, help='Output directory')
@click.option('--fps', help='Cap extraction at N frames per second')
@click.option('--scale', help='Resize, e.g. 1280:-1 or -1:720 (lanczos)')
@click.option('--start', help='Start offset, e.g. 00:00:05')
@click.option('--duration', help='Duration, e.g. 10 or 00:00:10')
@click.option('--unique', is_flag=True, help='Drop near-identical frames during extraction (mpdecimate)')
@click.option('--scene', help='Scene-change threshold T, or a range A~B tried from B down to A')
@click.option('--scene-step', type=click.FloatRange(min=0, min_open=True), help='Step for --scene ranges (default 0.01)')
@click.option('--dedupe', help='Post-extraction dedupe: exact | phash[:N] | aggressive | diverse[:N]')
@click.option('--webp', is_flag=True, help='Save lossless WebP instead of PNG')
@click.option('--flat', is_flag=True, help='No per-video folders; prefix frames with the video name')
@click.option('--prefix', help='Manual frame prefix for every video (a trailing _ is added)')
@click.option('--no-opt', is_flag=True, help='Skip PNG optimisation')
@click.option('--debug', is_flag=True, help='Verbose logs, including ffmpeg command lines')
@click.option('--config', '-c', 'config_path', help='Path to configuration file')
@click.argument('videos', nargs=-1, required=True)
def extract(output, fps, scale, start, duration, unique, scene, scene_step, dedupe, webp, flat, prefix, no_opt, debug, config_path, videos):
    """Extract frames from one or more videos."""

    if debug:
        logging.getLogger().setLevel(logging.DEBUG)

    config_dict = _load_config(config_path)

    # Command line options override file configuration
    overrides = {
        'fps': fps,
        'scale': scale,
        'start': start,
        'duration': duration,
        'scene': scene,
        'scene_step': scene_step,
        'dedupe': dedupe,
        'prefix': prefix,
    }
    config_dict.update({key: value for key, value in overrides.items() if value is not None})
    if unique:
        config_dict['unique'] = True
    if webp:
        config_dict['frame_format'] = 'webp'
    if flat:
        config_dict['flat'] = True
    if no_opt:
        config_dict['optimize_png'] = False

    _validate_settings(config_dict)

    converter = VideoToFrames(config_dict)
    _report(converter.process_batch(list(videos), output))

@click.command()
@click.argument('config_file')
def batch_process(config_file):
    """Process multiple videos using a batch configuration file."""

    if not os.path.exists(config_file):
        click.echo(f"❌ Config file not found: {config_file}", err=True)
        sys.exit(1)

    batch_config = Config.load_from_file(config_file)

    config_dict = Config.get_default_config()
    config_dict.update(Config.flatten(batch_config.get('settings') or {}))
    _validate_settings(config_dict)

    default_output = batch_config.get('output') or config_dict.get('output_base_folder')
    videos = batch_config.get('videos') or []

    converter = VideoToFrames(config_dict)
    results = []

    for i, video_config in enumerate(videos, 1):
        if isinstance(video_config, str):
            video_config = {'video': video_config}
        video_path = video_config.get('video')
        output = video_config.get('output', default_output)

        click.echo(f"Processing video {i}/{len(videos)}: {video_path}")
        if not video_path or not output:
            click.echo(f"❌ Entry {i} needs both a video and an output directory", err=True)
            results.append((video_path, None))
            continue

        results.extend(converter.process_batch([video_path], output))

    _report(results)

@click.command()
@click.option('--output', '-o', default='config.yaml', help='Output path for config template')
def generate_config(output):
    """Generate a configuration template file."""

    Config.generate_config_template(output)

    click.echo(f"✅ Generated configuration template: {output}")

@click.command()
def check_deps():
    """Report whether the external tools are on PATH."""

    missing_required = False
    for tool, required in (('ffmpeg', True), ('oxipng', False)):
        path = shutil.which(tool)
        if path:
            click.echo(f"✅ {tool}: {path}")
        elif required:
            click.echo(f"❌ {tool}: not found (required)")
            missing_required = True
        else:
            click.echo(f"⚠️  {tool}: not found (PNG optimisation falls back to Pillow)")

    if missing_required:
        sys.exit(1)

# Add commands to CLI group
cli.add_command(extract)
cli.add_command(batch_process)
cli.add_command(generate_config)
cli.add_command(check_deps)

if __name__ == '__main__':
    cli()
