"""Configuration settings for the video-to-frames extractor."""

import os
from typing import Dict, Any

class Config:
    """Configuration class for frame extraction and deduplication."""

    # Extraction settings
    FRAME_FORMAT = "png"  # png or webp, both lossless
    FRAME_NAME = "frame_"
    SCENE_STEP = 0.01
    MPDECIMATE_FILTER = "mpdecimate=hi=768:lo=128:frac=0.33"
    FFMPEG_LOGLEVEL = "error"

    # Last-resort extraction when every other attempt produced nothing
    MINIMAL_FALLBACK_FPS = 1
    MINIMAL_FALLBACK_SCALE = "-1:720"

    # Dedupe settings (Hamming distance on 64-bit perceptual hashes)
    PHASH_THRESHOLD = 5
    AGGRESSIVE_THRESHOLD = 12
    DIVERSE_MIN_DISTANCE = 12
    HASH_SIZE = 8
    HASH_HIGHFREQ_FACTOR = 4

    # Optimization settings
    OPTIMIZE_PNG = True
    OXIPNG_LEVEL = 3
    OPTIMIZE_WORKERS = None  # None = one per CPU core

    @classmethod
    def load_from_file(cls, config_file: str) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        import yaml

        if not os.path.exists(config_file):
            return {}

        with open(config_file, 'r') as f:
            return yaml.safe_load(f) or {}

    @classmethod
    def load_local_config(cls, local_config_path: str = 'config.local.yaml') -> Dict[str, Any]:
        """Load local configuration from config.local.yaml if it exists."""
        import yaml

        if not os.path.exists(local_config_path):
            return {}

        try:
            with open(local_config_path, 'r') as f:
                local_config = yaml.safe_load(f) or {}

            return cls.flatten(local_config)

        except Exception as e:
            print(f"Warning: Could not load local config: {e}")
            return {}

    @classmethod
    def flatten(cls, local_config: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten the nested YAML layout into config dict keys.

        Top-level scalar keys are passed through unchanged so that already
        flat settings (e.g. a batch file's ``settings`` block) also work.
        """
        flattened = {k: v for k, v in local_config.items() if not isinstance(v, dict)}

        # Handle extraction configuration
        if isinstance(local_config.get('extraction'), dict):
            extraction_config = local_config['extraction']
            for key in ('frame_format', 'scene_step', 'ffmpeg_loglevel',
                        'minimal_fallback_fps', 'minimal_fallback_scale'):
                if key in extraction_config:
                    flattened[key] = extraction_config[key]
            if 'mpdecimate' in extraction_config:
                flattened['mpdecimate_filter'] = extraction_config['mpdecimate']

        # Handle dedupe configuration
        if isinstance(local_config.get('dedupe'), dict):
            dedupe_config = local_config['dedupe']
            if 'phash_threshold' in dedupe_config:
                flattened['phash_threshold'] = dedupe_config['phash_threshold']
            if 'aggressive_threshold' in dedupe_config:
                flattened['aggressive_threshold'] = dedupe_config['aggressive_threshold']
            if 'diverse_min_distance' in dedupe_config:
                flattened['diverse_min_distance'] = dedupe_config['diverse_min_distance']
            if 'hash_size' in dedupe_config:
                flattened['hash_size'] = dedupe_config['hash_size']

        # Handle optimization configuration
        if isinstance(local_config.get('optimization'), dict):
            opt_config = local_config['optimization']
            if 'enabled' in opt_config:
                flattened['optimize_png'] = opt_config['enabled']
            if 'oxipng_level' in opt_config:
                flattened['oxipng_level'] = opt_config['oxipng_level']
            if 'workers' in opt_config:
                flattened['optimize_workers'] = opt_config['workers']

        # Handle output configuration
        if isinstance(local_config.get('output'), dict):
            output_config = local_config['output']
            if 'base_folder' in output_config:
                flattened['output_base_folder'] = output_config['base_folder']
            if 'flat' in output_config:
                flattened['flat'] = output_config['flat']
            if 'prefix' in output_config:
                flattened['prefix'] = output_config['prefix']

        return flattened

    @classmethod
    def get_default_config(cls) -> Dict[str, Any]:
        """Get default configuration as dictionary, merged with local config."""
        # Start with defaults
        config = {
            'frame_format': cls.FRAME_FORMAT,
            'frame_name': cls.FRAME_NAME,
            'scene_step': cls.SCENE_STEP,
            'mpdecimate_filter': cls.MPDECIMATE_FILTER,
            'ffmpeg_loglevel': os.environ.get('FFMPEG_LOGLEVEL', cls.FFMPEG_LOGLEVEL),
            'minimal_fallback_fps': cls.MINIMAL_FALLBACK_FPS,
            'minimal_fallback_scale': cls.MINIMAL_FALLBACK_SCALE,
            'phash_threshold': cls.PHASH_THRESHOLD,
            'aggressive_threshold': cls.AGGRESSIVE_THRESHOLD,
            'diverse_min_distance': cls.DIVERSE_MIN_DISTANCE,
            'hash_size': cls.HASH_SIZE,
            'hash_highfreq_factor': cls.HASH_HIGHFREQ_FACTOR,
            'optimize_png': cls.OPTIMIZE_PNG,
            'oxipng_level': cls.OXIPNG_LEVEL,
            'optimize_workers': cls.OPTIMIZE_WORKERS,
        }

        # Merge with local configuration
        local_config = cls.load_local_config()
        config.update(local_config)

        return config

    @classmethod
    def generate_config_template(cls, output_path: str) -> None:
        """Write a YAML template in the config.local.yaml layout."""
        import yaml

        config_template = {
            'extraction': {
                'frame_format': cls.FRAME_FORMAT,
                'scene_step': cls.SCENE_STEP,
                'mpdecimate': cls.MPDECIMATE_FILTER,
                'ffmpeg_loglevel': cls.FFMPEG_LOGLEVEL,
                'minimal_fallback_fps': cls.MINIMAL_FALLBACK_FPS,
                'minimal_fallback_scale': cls.MINIMAL_FALLBACK_SCALE
            },
            'dedupe': {
                'phash_threshold': cls.PHASH_THRESHOLD,
                'aggressive_threshold': cls.AGGRESSIVE_THRESHOLD,
                'diverse_min_distance': cls.DIVERSE_MIN_DISTANCE,
                'hash_size': cls.HASH_SIZE
            },
            'optimization': {
                'enabled': cls.OPTIMIZE_PNG,
                'oxipng_level': cls.OXIPNG_LEVEL
            },
            'output': {
                'flat': False
            }
        }

        with open(output_path, 'w') as f:
            yaml.dump(config_template, f, default_flow_style=False, indent=2)
