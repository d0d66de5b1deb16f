"""Best-effort lossless PNG optimisation, one worker process per CPU core."""

import glob
import logging
import os
import shutil
import subprocess
from multiprocessing import Pool, cpu_count
from typing import Dict, Optional, Tuple

from PIL import Image

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def optimize_png(job: Tuple[str, int, Optional[str]]) -> bool:
    """Rewrite one PNG smaller in place. Returns False (and logs) on any failure.

    Runs in a worker process, so it takes a single picklable tuple:
    (path, oxipng level, oxipng executable or None for the Pillow path).
    """
    path, level, oxipng_path = job
    try:
        if oxipng_path:
            subprocess.run(
                [oxipng_path, '-o', str(level), '--strip', 'safe', '--quiet', path],
                check=True, capture_output=True
            )
        else:
            _pillow_optimize(path)
        return True
    except (subprocess.SubprocessError, OSError, ValueError) as e:
        logger.warning(f"Could not optimize {path}: {e}")
        return False


def _pillow_optimize(path: str) -> None:
    temp_path = f"{path}.opt.png"
    try:
        with Image.open(path) as img:
            img.save(temp_path, 'PNG', optimize=True)
        # Only replace when the rewrite is actually smaller
        if os.path.getsize(temp_path) < os.path.getsize(path):
            os.replace(temp_path, path)
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


class ImageOptimizer:
    """Compresses a video's PNG frames in parallel without changing pixels."""

    def __init__(self, config: Dict):
        self.config = config

    def optimize_directory(self, directory: str, prefix: str = '') -> int:
        """Optimise ``{prefix}*.png`` in ``directory``; returns how many succeeded."""
        pattern = os.path.join(glob.escape(directory), f"{glob.escape(prefix)}*.png")
        frames = sorted(glob.glob(pattern))
        if not frames:
            return 0

        oxipng_path = shutil.which('oxipng')
        if not oxipng_path:
            logger.info("oxipng not found, optimizing with Pillow instead")

        level = self.config.get('oxipng_level', 3)
        jobs = [(frame, level, oxipng_path) for frame in frames]

        workers = self.config.get('optimize_workers') or cpu_count()
        workers = max(1, min(workers, len(jobs)))

        logger.info(f"Optimizing {len(jobs)} PNG frames with {workers} worker(s)...")
        if workers == 1:
            results = [optimize_png(job) for job in jobs]
        else:
            with Pool(processes=workers) as pool:
                results = pool.map(optimize_png, jobs)

        optimized = sum(1 for ok in results if ok)
        if optimized < len(jobs):
            logger.warning(f"{len(jobs) - optimized} frame(s) could not be optimized and were left as-is")
        return optimized
