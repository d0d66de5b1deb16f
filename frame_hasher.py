"""Perceptual and exact fingerprints for extracted frames."""

import hashlib

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError


class DecodeError(Exception):
    """Raised when a frame cannot be decoded into pixels."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"Could not decode image {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class Fingerprint:
    """Fixed-width perceptual signature; ``a - b`` is the Hamming distance."""

    def __init__(self, bits: np.ndarray):
        self.bits = np.asarray(bits, dtype=bool).flatten()

    @classmethod
    def from_int(cls, value: int, width: int = 64) -> 'Fingerprint':
        """Build a fingerprint from the low ``width`` bits of an integer (MSB first)."""
        bits = [(value >> (width - 1 - i)) & 1 for i in range(width)]
        return cls(np.array(bits, dtype=bool))

    @property
    def width(self) -> int:
        return self.bits.size

    def distance(self, other: 'Fingerprint') -> int:
        """Number of differing bits between two equal-width fingerprints."""
        if self.width != other.width:
            raise ValueError(
                f"Fingerprint widths differ ({self.width} vs {other.width})"
            )
        return int(np.count_nonzero(self.bits != other.bits))

    def __sub__(self, other: 'Fingerprint') -> int:
        return self.distance(other)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Fingerprint):
            return NotImplemented
        return self.width == other.width and bool(np.array_equal(self.bits, other.bits))

    def __hash__(self) -> int:
        return hash(self.bits.tobytes())

    def __str__(self) -> str:
        value = 0
        for bit in self.bits:
            value = (value << 1) | int(bit)
        return format(value, f'0{(self.width + 3) // 4}x')

    def __repr__(self) -> str:
        return f"Fingerprint({self})"


class PerceptualHasher:
    """Computes pHash-style fingerprints.

    The image is converted to grayscale, downsampled to a square of
    ``hash_size * highfreq_factor`` pixels, transformed with a 2D DCT, and
    the top-left ``hash_size x hash_size`` low-frequency block is
    thresholded against its median, one bit per coefficient.
    """

    def __init__(self, hash_size: int = 8, highfreq_factor: int = 4):
        if hash_size < 2:
            raise ValueError("hash_size must be at least 2")
        if highfreq_factor < 1:
            raise ValueError("highfreq_factor must be at least 1")
        self.hash_size = hash_size
        self.highfreq_factor = highfreq_factor

    @property
    def bit_width(self) -> int:
        return self.hash_size * self.hash_size

    def fingerprint(self, image_path: str) -> Fingerprint:
        """Fingerprint the image at ``image_path``; raises DecodeError if unreadable."""
        pixels = self._load_grayscale(image_path)
        return self.fingerprint_pixels(pixels)

    def fingerprint_pixels(self, pixels: np.ndarray) -> Fingerprint:
        """Fingerprint an already-decoded grayscale pixel array."""
        img_size = self.hash_size * self.highfreq_factor
        # cv2.dct only accepts even-sized inputs
        if img_size % 2:
            img_size += 1

        resized = np.asarray(
            Image.fromarray(np.asarray(pixels, dtype=np.uint8)).resize(
                (img_size, img_size), Image.Resampling.LANCZOS
            ),
            dtype=np.float64,
        )
        dct = cv2.dct(resized)
        # Undo the orthonormal scaling of the DC row and column so the median
        # split matches the unnormalised DCT used by imagehash.phash
        dct[0, :] *= np.sqrt(2)
        dct[:, 0] *= np.sqrt(2)
        dct_low = dct[:self.hash_size, :self.hash_size]
        median = np.median(dct_low)
        return Fingerprint(dct_low > median)

    def _load_grayscale(self, image_path: str) -> np.ndarray:
        try:
            with Image.open(image_path) as img:
                return np.asarray(img.convert('RGB').convert('L'), dtype=np.uint8)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise DecodeError(image_path, str(e)) from e


def file_digest(path: str, chunk_size: int = 1024 * 1024) -> str:
    """SHA-256 of the file's raw bytes."""
    sha = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            sha.update(chunk)
    return sha.hexdigest()
