"""Scene-threshold search and the zero-frame fallback chain around extraction."""

import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from frame_extractor import ExtractionOutcome, ExtractionRequest, format_threshold

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

RANGE_TOLERANCE = Decimal("1e-9")


class ExtractionEmpty(Exception):
    """Every extraction tier for a video produced zero frames."""

    def __init__(self, video_path: str):
        self.video_path = video_path
        super().__init__(f"No frames extracted from {video_path}")


def _parse_threshold(value: str) -> Decimal:
    try:
        threshold = Decimal(value.strip())
    except InvalidOperation:
        raise ValueError(f"Scene threshold must be a number, got '{value}'")
    if not threshold.is_finite() or threshold < 0 or threshold > 1:
        raise ValueError(f"Scene threshold must be between 0 and 1, got '{value}'")
    return threshold


def parse_scene_threshold(value: str) -> float:
    """Parse a single ``--scene T`` value."""
    return float(_parse_threshold(value))


def parse_scene_range(value: str) -> Tuple[float, float]:
    """Parse ``A~B`` into (lo, hi); the two ends may be given in either order."""
    if '~' not in value:
        raise ValueError(f"Scene range must look like A~B, got '{value}'")
    first, second = value.split('~', 1)
    lo, hi = _parse_threshold(first), _parse_threshold(second)
    if hi < lo:
        lo, hi = hi, lo
    return float(lo), float(hi)


def parse_scene_step(value) -> Decimal:
    """Parse a scene-range step; it must be a finite number above zero."""
    try:
        step = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValueError(f"Scene step must be a number, got '{value}'")
    if not step.is_finite() or step <= 0:
        raise ValueError(f"Scene step must be positive, got '{value}'")
    return step


def scene_candidates(lo: float, hi: float, step: float) -> List[float]:
    """Thresholds from ``hi`` down to ``lo`` inclusive, ``step`` apart.

    Decimal arithmetic keeps 0.1 - 3 * 0.01 at 0.07 exactly; the small
    tolerance on ``lo`` still admits values that land just below it.
    """
    d_lo, d_hi = Decimal(str(lo)), Decimal(str(hi))
    d_step = parse_scene_step(step)
    if d_hi < d_lo:
        d_lo, d_hi = d_hi, d_lo

    candidates = []
    threshold = d_hi
    while threshold >= d_lo - RANGE_TOLERANCE:
        candidates.append(float(threshold))
        threshold -= d_step
    return candidates


class SearchResult:
    """Which extraction tier produced the frames, and with what threshold."""

    SCENE_RANGE = 'scene-range'
    PRIMARY = 'primary'
    NO_FILTERS = 'no-filters'
    MINIMAL = 'minimal'

    def __init__(self, tier: str, outcome: ExtractionOutcome, threshold: Optional[float] = None):
        self.tier = tier
        self.outcome = outcome
        self.threshold = threshold

    @property
    def frame_count(self) -> int:
        return self.outcome.frame_count

    def __repr__(self) -> str:
        return f"SearchResult(tier={self.tier!r}, threshold={self.threshold!r}, frames={self.frame_count})"


class SceneThresholdSearch:
    """Drives an extractor until some configuration yields frames.

    The extractor only needs an ``extract(request) -> ExtractionOutcome``
    method, so tests can hand in a stub instead of ffmpeg.

    The descending search assumes a stricter threshold never yields more
    frames; it accepts the first non-empty candidate without checking that.
    """

    def __init__(self, extractor, config: Dict):
        self.extractor = extractor
        self.config = config

    def search(self, request: ExtractionRequest, lo: float, hi: float, step: float) -> SearchResult:
        """Try thresholds from ``hi`` down to ``lo``; stop at the first that yields frames.

        Returns a result with ``threshold=None`` when no candidate produced frames.
        """
        candidates = scene_candidates(lo, hi, step)
        logger.info(f"Trying scene thresholds {format_threshold(hi)}~{format_threshold(lo)} step {format_threshold(step)}")

        last_outcome = ExtractionOutcome.from_count(0)
        for threshold in candidates:
            logger.info(f"   scene={format_threshold(threshold)}")
            outcome = self.extractor.extract(request.derive(scene_threshold=threshold, unique=False))
            if outcome.has_frames:
                logger.info(f"   scene={format_threshold(threshold)} produced {outcome.frame_count} frames")
                return SearchResult(SearchResult.SCENE_RANGE, outcome, threshold)
            last_outcome = outcome

        return SearchResult(SearchResult.SCENE_RANGE, last_outcome, None)

    def extract_with_fallback(
        self,
        request: ExtractionRequest,
        scene_range: Optional[Tuple[float, float]] = None,
        step: Optional[float] = None
    ) -> SearchResult:
        """Extract frames for one video, degrading through the fallback tiers.

        Tiers: the scene range search (or the request as given), then the
        same fps/scale without scene/unique filtering, then a fixed minimal
        fps and downscale. Raises ExtractionEmpty when all of them yield
        nothing.
        """
        if scene_range is not None:
            lo, hi = scene_range
            if step is None:
                step = self.config.get('scene_step', 0.01)
            result = self.search(request, lo, hi, step)
        else:
            filter_graph = request.filter_graph()
            if filter_graph:
                logger.info(f"   primary -vf: \"{filter_graph}\"")
            outcome = self.extractor.extract(request)
            result = SearchResult(SearchResult.PRIMARY, outcome, request.scene_threshold)

        if result.outcome.has_frames:
            return result

        logger.info("   [fallback] without scene/unique filters...")
        unfiltered = request.derive(scene_threshold=None, unique=False)
        outcome = self.extractor.extract(unfiltered)
        if outcome.has_frames:
            return SearchResult(SearchResult.NO_FILTERS, outcome)

        fps = self.config.get('minimal_fallback_fps', 1)
        scale = self.config.get('minimal_fallback_scale', '-1:720')
        logger.info(f"   [fallback] minimal: fps={fps}, scale={scale}...")
        minimal = unfiltered.derive(fps=str(fps), scale=scale)
        outcome = self.extractor.extract(minimal)
        if outcome.has_frames:
            return SearchResult(SearchResult.MINIMAL, outcome)

        raise ExtractionEmpty(request.video_path)
