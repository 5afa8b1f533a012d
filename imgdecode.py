# imgdecode.py
"""Decode image file bytes into a monopack.PixelGrid."""
import io

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from monopack import DecodeError, PixelGrid

DEFAULT_DECODER = "auto"


def _to_8bit(arr: np.ndarray) -> np.ndarray:
    if arr.dtype == np.uint8:
        return arr
    if arr.dtype == np.uint16:
        return (arr >> 8).astype(np.uint8)
    if np.issubdtype(arr.dtype, np.floating):
        # OpenCV hands back float32 in 0..1 for some formats (EXR, TIFF)
        return np.clip(arr * 255.0 + 0.5, 0, 255).astype(np.uint8)
    # 32-bit ints from Pillow's "I" mode hold 16-bit samples
    return np.clip(arr.astype(np.int64) >> 8, 0, 255).astype(np.uint8)


class ImageDecoder:
    name = None

    def decode(self, data: bytes) -> PixelGrid:
        raise NotImplementedError


class OpenCVDecoder(ImageDecoder):
    name = "opencv"

    def decode(self, data: bytes) -> PixelGrid:
        buf = np.frombuffer(data, dtype=np.uint8)
        try:
            img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
        except cv2.error as e:
            raise DecodeError(f"OpenCV could not decode image: {e}") from e
        if img is None:
            raise DecodeError("OpenCV could not decode image: unsupported or corrupt data")

        img = _to_8bit(img)
        if img.ndim == 2:
            return PixelGrid(img)

        channels = img.shape[2]
        if channels == 1:
            return PixelGrid(img[:, :, 0])
        if channels == 2:
            return PixelGrid(img[:, :, 0], img[:, :, 1])
        if channels == 3:
            return PixelGrid(cv2.cvtColor(img, cv2.COLOR_BGR2GRAY))
        if channels == 4:
            gray = cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
            return PixelGrid(gray, img[:, :, 3])
        raise DecodeError(f"unsupported channel count: {channels}")


class PillowDecoder(ImageDecoder):
    name = "pillow"

    def decode(self, data: bytes) -> PixelGrid:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                return self._to_grid(img)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            # OSError here means truncated or broken data, the source is in memory
            raise DecodeError(f"Pillow could not decode image: {e}") from e

    def _to_grid(self, img: Image.Image) -> PixelGrid:
        if img.mode.startswith("I") or img.mode == "F":
            arr = np.asarray(img)
            if img.mode == "F":
                arr = np.clip(arr, 0, 255).astype(np.uint8)
            return PixelGrid(_to_8bit(arr))

        has_alpha = img.mode in ("RGBA", "LA", "PA", "La", "RGBa") or "transparency" in img.info
        if has_alpha:
            la = img.convert("RGBA").convert("LA")
            arr = np.asarray(la)
            return PixelGrid(arr[:, :, 0], arr[:, :, 1])

        return PixelGrid(np.asarray(img.convert("L")))


class AutoDecoder(ImageDecoder):
    """OpenCV first, Pillow for whatever OpenCV rejects (e.g. GIF)."""

    name = "auto"

    def __init__(self):
        self.decoders = [OpenCVDecoder(), PillowDecoder()]
        self.used = None

    def decode(self, data: bytes) -> PixelGrid:
        errors = []
        for decoder in self.decoders:
            try:
                grid = decoder.decode(data)
            except DecodeError as e:
                errors.append(str(e))
                continue
            self.used = decoder.name
            return grid
        raise DecodeError("; ".join(errors))


DECODERS = {
    AutoDecoder.name: AutoDecoder,
    OpenCVDecoder.name: OpenCVDecoder,
    PillowDecoder.name: PillowDecoder,
}


def get_decoder(name: str = DEFAULT_DECODER) -> ImageDecoder:
    try:
        return DECODERS[name]()
    except KeyError:
        raise ValueError(f"unknown decoder {name!r} (choose from {', '.join(DECODERS)})") from None


def decode_image(data: bytes, decoder: str = DEFAULT_DECODER) -> PixelGrid:
    return get_decoder(decoder).decode(data)
