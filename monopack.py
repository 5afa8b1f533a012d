# monopack.py
"""
Pack grayscale pixel grids into 1 bit-per-pixel, MSB-first byte rows.

Each row is padded to a whole byte, so row r always starts at r * row_stride(W).
Dark pixels (below THRESHOLD) become set bits; fully transparent pixels never do.
"""
from concurrent.futures import ThreadPoolExecutor

import cv2
import numpy as np

THRESHOLD = 128   # intensity == THRESHOLD counts as background


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

class Img2MonoError(Exception):
    exit_code = 1


class ArgumentError(Img2MonoError):
    exit_code = 2


class DecodeError(Img2MonoError):
    exit_code = 3


class ImageIOError(Img2MonoError):
    exit_code = 4


class InvalidDimensionError(Img2MonoError):
    exit_code = 5


# ----------------------------------------------------------------------
# Pixel grid
# ----------------------------------------------------------------------

def _as_u8(values, what: str) -> np.ndarray:
    arr = np.asarray(values)
    if arr.ndim == 1 and arr.size == 0:
        arr = arr.reshape(0, 0)
    if arr.ndim != 2:
        raise ValueError(f"{what} must be 2-D (rows x columns), got shape {arr.shape}")
    if arr.dtype != np.uint8:
        if arr.size and (arr.min() < 0 or arr.max() > 255):
            raise ValueError(f"{what} values must be in 0..255")
        arr = arr.astype(np.uint8)
    arr = arr.copy()
    arr.setflags(write=False)
    return arr


class PixelGrid:
    """Read-only H x W grid of 8-bit intensities with optional 8-bit alpha."""

    def __init__(self, intensity, alpha=None):
        self.intensity = _as_u8(intensity, "intensity")
        self.alpha_channel = None
        if alpha is not None:
            self.alpha_channel = _as_u8(alpha, "alpha")
            if self.alpha_channel.shape != self.intensity.shape:
                raise ValueError(
                    f"alpha shape {self.alpha_channel.shape} does not match "
                    f"intensity shape {self.intensity.shape}"
                )

    @property
    def width(self) -> int:
        return self.intensity.shape[1]

    @property
    def height(self) -> int:
        return self.intensity.shape[0]

    def sample(self, x: int, y: int) -> int:
        return int(self.intensity[y, x])

    def alpha(self, x: int, y: int):
        if self.alpha_channel is None:
            return None
        return int(self.alpha_channel[y, x])

    def row(self, y: int):
        """Return (intensities, alphas-or-None) for row y."""
        alphas = None if self.alpha_channel is None else self.alpha_channel[y]
        return self.intensity[y], alphas

    def __repr__(self):
        has_alpha = self.alpha_channel is not None
        return f"PixelGrid({self.width}x{self.height}, alpha={has_alpha})"


# ----------------------------------------------------------------------
# Threshold classifier
# ----------------------------------------------------------------------

def _check_threshold(threshold: int) -> int:
    threshold = int(threshold)
    if not 0 <= threshold <= 255:
        raise ValueError(f"threshold must be in 0..255, got {threshold}")
    return threshold


def classify(intensity: int, alpha=None, threshold: int = THRESHOLD, invert: bool = False) -> bool:
    """Return True when the pixel should be drawn (an "ink" bit)."""
    if alpha is not None and alpha == 0:
        return False
    if invert:
        return intensity >= threshold
    return intensity < threshold


def classify_row(intensities, alphas=None, threshold: int = THRESHOLD, invert: bool = False) -> np.ndarray:
    """Vectorised classify() over one row; returns a bool array."""
    row = np.ascontiguousarray(intensities, dtype=np.uint8).reshape(1, -1)
    # cv2 keeps pixels strictly above thresh, so thresh = T - 1 splits at T
    mode = cv2.THRESH_BINARY if invert else cv2.THRESH_BINARY_INV
    _, bw = cv2.threshold(row, threshold - 1, 255, mode)
    ink = bw.reshape(-1) > 0
    if alphas is not None:
        ink &= np.asarray(alphas).reshape(-1) != 0
    return ink


# ----------------------------------------------------------------------
# Row bit packer
# ----------------------------------------------------------------------

def row_stride(width: int) -> int:
    return (width + 7) >> 3


def pack_row(bits, width=None) -> bytes:
    """
    Pack booleans MSB-first: bit i goes to byte i // 8, bit position 7 - i % 8.
    Unused low bits of the last byte stay zero.
    """
    if width is None:
        width = len(bits)
    elif width != len(bits):
        raise ValueError(f"row has {len(bits)} bits, expected {width}")

    out = bytearray(row_stride(width))
    for x, bit in enumerate(bits):
        if bit:
            out[x >> 3] |= 1 << (7 - (x & 7))
    return bytes(out)


def unpack_row(data, width: int) -> list:
    if len(data) != row_stride(width):
        raise ValueError(
            f"{len(data)} bytes cannot hold a row of {width} bits "
            f"(expected {row_stride(width)})"
        )
    return [bool(data[x >> 3] & (1 << (7 - (x & 7)))) for x in range(width)]


# ----------------------------------------------------------------------
# Image encoder
# ----------------------------------------------------------------------

class MonoEncoder:
    def __init__(
        self,
        threshold: int = THRESHOLD,
        invert: bool = False,
        pad_rows: bool = True,     # False: one continuous bit stream
        workers: int = 1,
        on_row=None,               # optional callback(index, bytes), one call per stride
    ):
        self.threshold = _check_threshold(threshold)
        self.invert = invert
        self.pad_rows = pad_rows
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.workers = workers
        self.on_row = on_row

    def packed_size(self, width: int, height: int) -> int:
        if self.pad_rows:
            return height * row_stride(width)
        return row_stride(width * height)

    def _ink_row(self, grid: PixelGrid, y: int) -> np.ndarray:
        intensities, alphas = grid.row(y)
        return classify_row(intensities, alphas, self.threshold, self.invert)

    def encode(self, grid: PixelGrid) -> bytes:
        width, height = grid.width, grid.height
        if width == 0 or height == 0:
            raise InvalidDimensionError(
                f"image has zero size ({width}x{height}); nothing to display"
            )

        if not self.pad_rows:
            bits = np.concatenate([self._ink_row(grid, y) for y in range(height)])
            packed = pack_row(bits.tolist())
            if self.on_row is not None:
                # rows straddle bytes here, so report row_stride(W)-sized chunks
                stride = row_stride(width)
                for i, start in enumerate(range(0, len(packed), stride)):
                    self.on_row(i, packed[start:start + stride])
            return packed

        stride = row_stride(width)
        out = bytearray(height * stride)

        def pack_into(y):
            packed = pack_row(self._ink_row(grid, y).tolist(), width)
            out[y * stride:(y + 1) * stride] = packed
            return packed

        if self.workers > 1 and height > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                rows = list(pool.map(pack_into, range(height)))
        else:
            rows = [pack_into(y) for y in range(height)]

        if self.on_row is not None:
            for y, packed in enumerate(rows):
                self.on_row(y, packed)

        return bytes(out)


def encode(grid: PixelGrid, **settings) -> bytes:
    return MonoEncoder(**settings).encode(grid)


def unpack_image(packed, width: int, height: int, pad_rows: bool = True) -> np.ndarray:
    """Inverse of encode(): bool array of shape (height, width), True = ink."""
    if pad_rows:
        stride = row_stride(width)
        if len(packed) != height * stride:
            raise ValueError(
                f"{len(packed)} bytes do not match {width}x{height} "
                f"(expected {height * stride})"
            )
        rows = [unpack_row(packed[y * stride:(y + 1) * stride], width) for y in range(height)]
        return np.array(rows, dtype=bool).reshape(height, width)

    bits = unpack_row(packed, width * height)
    return np.array(bits, dtype=bool).reshape(height, width)
