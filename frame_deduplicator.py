"""Frame deduplication policies and the pass that applies them to disk."""

import glob
import logging
import os
from typing import Callable, Dict, List, Optional, Tuple

from frame_hasher import DecodeError, Fingerprint, PerceptualHasher, file_digest

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FRAME_EXTENSIONS = ('png', 'webp')
DEDUPE_MODES = ('exact', 'phash', 'aggressive', 'diverse')


def list_frames(directory: str, prefix: str = '', extensions: Tuple[str, ...] = FRAME_EXTENSIONS) -> List[str]:
    """Frames in ``directory`` named ``{prefix}*.{ext}``, in chronological (name) order."""
    frames = []
    for ext in extensions:
        pattern = os.path.join(glob.escape(directory), f"{glob.escape(prefix)}*.{ext}")
        frames.extend(glob.glob(pattern))
    return sorted(frames)


def parse_dedupe_mode(mode: str) -> Tuple[str, Optional[int]]:
    """Split ``phash:6`` style mode strings into (kind, parameter).

    Valid forms are ``exact``, ``phash[:N]``, ``aggressive`` and
    ``diverse[:N]``. Raises ValueError for anything else.
    """
    kind, sep, value = mode.strip().partition(':')
    kind = kind.lower()
    if kind not in DEDUPE_MODES:
        raise ValueError(f"Unknown dedupe mode '{mode}' (expected one of: exact, phash[:N], aggressive, diverse[:N])")
    if not sep:
        return kind, None
    if kind in ('exact', 'aggressive'):
        raise ValueError(f"Dedupe mode '{kind}' does not take a parameter")
    try:
        parameter = int(value)
    except ValueError:
        raise ValueError(f"Dedupe parameter must be an integer, got '{value}'")
    if parameter < 0:
        raise ValueError(f"Dedupe parameter must not be negative, got {parameter}")
    return kind, parameter


class DedupeResult:
    """Outcome of one dedupe pass: which frames survive and which go."""

    def __init__(self, policy: 'DedupePolicy', kept: List[str], removed: List[str], unhashable: Optional[List[str]] = None):
        self.policy = policy
        self.kept = kept
        self.removed = removed
        self.unhashable = unhashable or []

    @property
    def kept_count(self) -> int:
        return len(self.kept)

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    def summary(self) -> str:
        text = f"[{self.policy.name}] kept={self.kept_count} removed={self.removed_count}"
        parameter = self.policy.parameter_label()
        if parameter:
            text += f" {parameter}"
        if self.unhashable:
            text += f" unhashable={len(self.unhashable)}"
        return text


class DedupePolicy:
    """A named strategy that picks survivors from an ordered list of frames.

    Policies never touch the filesystem beyond reading frames; deleting the
    removed frames is left to FrameDeduplicator.
    """

    name = 'base'

    def select(self, frames: List[str]) -> DedupeResult:
        raise NotImplementedError

    def parameter_label(self) -> str:
        return ''


class ExactPolicy(DedupePolicy):
    """Keeps one frame per SHA-256 digest."""

    name = 'exact'

    def __init__(self, digest_fn: Callable[[str], str] = file_digest):
        self.digest_fn = digest_fn

    def select(self, frames: List[str]) -> DedupeResult:
        # Sorting by (digest, path) groups identical files; the first of each group survives
        digested = sorted((self.digest_fn(frame), frame) for frame in frames)

        seen_digests = set()
        kept, removed = [], []
        for digest, frame in digested:
            if digest in seen_digests:
                logger.info(f"Removing exact duplicate: {frame}")
                removed.append(frame)
            else:
                seen_digests.add(digest)
                kept.append(frame)

        return DedupeResult(self, sorted(kept), removed)


class NearDuplicatePolicy(DedupePolicy):
    """Drops a frame when any already-kept frame is within ``threshold`` bits.

    Kept frames are compared in insertion order and the first one within
    the threshold decides; the closest match is not searched for.
    """

    name = 'phash'

    def __init__(self, threshold: int, fingerprint_fn: Callable[[str], Fingerprint]):
        if threshold < 0:
            raise ValueError("threshold must not be negative")
        self.threshold = threshold
        self.fingerprint_fn = fingerprint_fn

    def parameter_label(self) -> str:
        return f"threshold={self.threshold}"

    def select(self, frames: List[str]) -> DedupeResult:
        kept_set: List[Tuple[str, Fingerprint]] = []
        removed, unhashable = [], []

        for frame in frames:
            try:
                fingerprint = self.fingerprint_fn(frame)
            except DecodeError as e:
                logger.warning(f"Skipping unhashable frame: {e}")
                unhashable.append(frame)
                continue

            match = self._first_match(fingerprint, kept_set)
            if match is None:
                kept_set.append((frame, fingerprint))
            else:
                kept_frame, distance = match
                logger.info(f"Removing near-duplicate (dist={distance}): {frame} ~ {kept_frame}")
                removed.append(frame)

        return DedupeResult(self, [frame for frame, _ in kept_set], removed, unhashable)

    def _first_match(self, fingerprint: Fingerprint, kept_set: List[Tuple[str, Fingerprint]]) -> Optional[Tuple[str, int]]:
        for kept_frame, kept_fingerprint in kept_set:
            distance = fingerprint - kept_fingerprint
            if distance <= self.threshold:
                return kept_frame, distance
        return None


class AggressivePolicy(NearDuplicatePolicy):
    """Near-duplicate removal with a fixed, much looser threshold."""

    name = 'aggressive'


class DiversityPolicy(DedupePolicy):
    """Keeps a frame only when it is at least ``min_distance`` bits from every kept frame."""

    name = 'diverse'

    def __init__(self, min_distance: int, fingerprint_fn: Callable[[str], Fingerprint]):
        if min_distance < 0:
            raise ValueError("min_distance must not be negative")
        self.min_distance = min_distance
        self.fingerprint_fn = fingerprint_fn

    def parameter_label(self) -> str:
        return f"min_distance={self.min_distance}"

    def select(self, frames: List[str]) -> DedupeResult:
        kept_set: List[Tuple[str, Fingerprint]] = []
        removed, unhashable = [], []

        for frame in frames:
            try:
                fingerprint = self.fingerprint_fn(frame)
            except DecodeError as e:
                logger.warning(f"Skipping unhashable frame: {e}")
                unhashable.append(frame)
                continue

            if not kept_set:
                kept_set.append((frame, fingerprint))
                continue

            nearest = min(fingerprint - kept_fingerprint for _, kept_fingerprint in kept_set)
            if nearest >= self.min_distance:
                kept_set.append((frame, fingerprint))
            else:
                logger.info(f"Removing low-diversity frame (min_dist={nearest} < {self.min_distance}): {frame}")
                removed.append(frame)

        return DedupeResult(self, [frame for frame, _ in kept_set], removed, unhashable)


class FrameDeduplicator:
    """Runs a dedupe policy over one video's frames and deletes the losers."""

    def __init__(self, config: Dict):
        self.config = config
        self.hasher = PerceptualHasher(
            hash_size=config.get('hash_size', 8),
            highfreq_factor=config.get('hash_highfreq_factor', 4),
        )

    def build_policy(self, mode: str) -> DedupePolicy:
        """Turn a mode string like ``diverse:10`` into a policy instance."""
        kind, parameter = parse_dedupe_mode(mode)

        if kind == 'exact':
            return ExactPolicy()
        if kind == 'phash':
            threshold = parameter if parameter is not None else self.config.get('phash_threshold', 5)
            return NearDuplicatePolicy(threshold, self.hasher.fingerprint)
        if kind == 'aggressive':
            return AggressivePolicy(self.config.get('aggressive_threshold', 12), self.hasher.fingerprint)
        min_distance = parameter if parameter is not None else self.config.get('diverse_min_distance', 12)
        return DiversityPolicy(min_distance, self.hasher.fingerprint)

    def dedupe_directory(self, directory: str, policy: DedupePolicy, prefix: str = '') -> DedupeResult:
        """Apply ``policy`` to the frames in ``directory`` that carry ``prefix``."""
        frames = list_frames(directory, prefix)
        logger.info(f"Dedupe {policy.name} over {len(frames)} frames in {directory}")

        result = policy.select(frames)
        self.remove_frames(result.removed)

        logger.info(result.summary())
        return result

    @staticmethod
    def remove_frames(frames: List[str]) -> None:
        """Delete frames; a frame that is already gone is skipped, other errors propagate."""
        for frame in frames:
            try:
                os.remove(frame)
            except FileNotFoundError:
                logger.debug(f"Frame already removed: {frame}")
