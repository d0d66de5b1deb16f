"""Lossless frame extraction through ffmpeg."""

import glob
import logging
import os
from typing import Dict, Optional

import ffmpeg

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FRAME_FORMATS = ('png', 'webp')
DEFAULT_MPDECIMATE = "mpdecimate=hi=768:lo=128:frac=0.33"


def count_frames(directory: str, prefix: str, frame_format: str) -> int:
    """Number of files named ``{prefix}*.{frame_format}`` in ``directory``."""
    pattern = os.path.join(glob.escape(directory), f"{glob.escape(prefix)}*.{frame_format}")
    return len(glob.glob(pattern))


def format_threshold(threshold: float) -> str:
    return format(threshold, 'g')


class ExtractionRequest:
    """Everything ffmpeg needs to turn one video into numbered frames."""

    _FIELDS = ('video_path', 'output_dir', 'prefix', 'frame_format', 'start', 'duration',
               'fps', 'scale', 'scene_threshold', 'unique', 'mpdecimate_filter')

    def __init__(
        self,
        video_path: str,
        output_dir: str,
        prefix: str = 'frame_',
        frame_format: str = 'png',
        start: Optional[str] = None,
        duration: Optional[str] = None,
        fps: Optional[str] = None,
        scale: Optional[str] = None,
        scene_threshold: Optional[float] = None,
        unique: bool = False,
        mpdecimate_filter: str = DEFAULT_MPDECIMATE
    ):
        if frame_format not in FRAME_FORMATS:
            raise ValueError(f"Unsupported frame format '{frame_format}' (expected png or webp)")
        self.video_path = video_path
        self.output_dir = output_dir
        self.prefix = prefix
        self.frame_format = frame_format
        self.start = start
        self.duration = duration
        self.fps = fps
        self.scale = scale
        self.scene_threshold = scene_threshold
        self.unique = unique
        self.mpdecimate_filter = mpdecimate_filter

    @property
    def output_pattern(self) -> str:
        return os.path.join(self.output_dir, f"{self.prefix}%06d.{self.frame_format}")

    def derive(self, **changes) -> 'ExtractionRequest':
        """Copy of this request with some fields replaced."""
        values = {name: getattr(self, name) for name in self._FIELDS}
        unknown = set(changes) - set(self._FIELDS)
        if unknown:
            raise TypeError(f"Unknown request fields: {', '.join(sorted(unknown))}")
        values.update(changes)
        return ExtractionRequest(**values)

    def filter_graph(self) -> str:
        """The ``-vf`` expression: scene select or mpdecimate, then fps, then scale."""
        parts = []
        if self.scene_threshold is not None:
            parts.append(f"select='gt(scene,{format_threshold(self.scene_threshold)})'")
        elif self.unique:
            parts.append(self.mpdecimate_filter)
        if self.fps:
            parts.append(f"fps={self.fps}")
        if self.scale:
            parts.append(f"scale={self.scale}:flags=lanczos")
        return ','.join(parts)


class ExtractionOutcome:
    """Result of a single ffmpeg invocation.

    The frame count found on disk afterwards is what callers act on; a
    failed invocation that still left frames behind counts as having frames.
    """

    SUCCESS = 'success'
    EMPTY = 'empty'
    FAILED = 'failed'

    def __init__(self, status: str, frame_count: int = 0, error: Optional[str] = None):
        self.status = status
        self.frame_count = frame_count
        self.error = error

    @classmethod
    def from_count(cls, frame_count: int, error: Optional[str] = None) -> 'ExtractionOutcome':
        if error is not None:
            return cls(cls.FAILED, frame_count, error)
        if frame_count > 0:
            return cls(cls.SUCCESS, frame_count)
        return cls(cls.EMPTY, 0)

    @property
    def has_frames(self) -> bool:
        return self.frame_count > 0

    def __repr__(self) -> str:
        return f"ExtractionOutcome(status={self.status!r}, frame_count={self.frame_count})"


class FfmpegExtractor:
    """Runs ffmpeg for an ExtractionRequest and reports how many frames appeared."""

    def __init__(self, config: Dict):
        self.config = config

    def build_stream(self, request: ExtractionRequest):
        """Build the ffmpeg-python stream for ``request`` without running it."""
        input_kwargs = {'hwaccel': 'auto'}
        if request.start:
            input_kwargs['ss'] = request.start

        output_kwargs = {}
        if request.duration:
            output_kwargs['t'] = request.duration
        vf = request.filter_graph()
        if vf:
            output_kwargs['vf'] = vf
        output_kwargs.update(vsync='vfr', f='image2', pix_fmt='rgb24')
        if request.frame_format == 'png':
            output_kwargs.update(compression_level=9, pred='mixed')
        else:
            output_kwargs['lossless'] = 1

        loglevel = self.config.get('ffmpeg_loglevel', 'error')
        return (
            ffmpeg
            .input(request.video_path, **input_kwargs)
            .output(request.output_pattern, **output_kwargs)
            .global_args('-hide_banner', '-loglevel', loglevel, '-stats')
            .overwrite_output()
        )

    def extract(self, request: ExtractionRequest) -> ExtractionOutcome:
        """Run one extraction and count the frames it left in the output directory."""
        os.makedirs(request.output_dir, exist_ok=True)
        stream = self.build_stream(request)
        logger.debug(f"CMD: {' '.join(stream.compile())}")

        error = None
        try:
            self._run(stream)
        except ffmpeg.Error as e:
            error = e.stderr.decode('utf-8', errors='replace').strip() if e.stderr else str(e)
            logger.warning(f"ffmpeg failed for {request.video_path}: {error}")
        except OSError as e:
            error = str(e)
            logger.warning(f"Could not run ffmpeg: {e}")

        frame_count = count_frames(request.output_dir, request.prefix, request.frame_format)
        return ExtractionOutcome.from_count(frame_count, error)

    def _run(self, stream) -> None:
        stream.run(capture_stdout=True, capture_stderr=True)
