import io

import cv2
import numpy as np
import pytest
from PIL import Image

from imgdecode import AutoDecoder, OpenCVDecoder, PillowDecoder, decode_image, get_decoder
from monopack import DecodeError, encode


def png_bytes(arr) -> bytes:
    ok, buf = cv2.imencode(".png", np.asarray(arr))
    assert ok
    return buf.tobytes()


def pillow_bytes(img: Image.Image, fmt: str) -> bytes:
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


@pytest.mark.parametrize("decoder", [OpenCVDecoder(), PillowDecoder(), AutoDecoder()])
def test_grayscale_png(decoder):
    grid = decoder.decode(png_bytes(np.array([[10, 200, 50]], dtype=np.uint8)))
    assert (grid.width, grid.height) == (3, 1)
    assert [grid.sample(x, 0) for x in range(3)] == [10, 200, 50]
    assert grid.alpha_channel is None
    assert encode(grid) == b"\xa0"


@pytest.mark.parametrize("decoder", [OpenCVDecoder(), PillowDecoder()])
def test_color_png_uses_luma(decoder):
    bgr = np.array([[[77, 77, 77], [0, 0, 0], [255, 255, 255]]], dtype=np.uint8)
    grid = decoder.decode(png_bytes(bgr))
    assert [grid.sample(x, 0) for x in range(3)] == [77, 0, 255]


@pytest.mark.parametrize("decoder", [OpenCVDecoder(), PillowDecoder()])
def test_saturated_colors_use_601_weights(decoder):
    # BGR order: blue, green, red
    bgr = np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255]]], dtype=np.uint8)
    grid = decoder.decode(png_bytes(bgr))
    assert [grid.sample(x, 0) for x in range(3)] == [29, 150, 76]


@pytest.mark.parametrize("decoder", [OpenCVDecoder(), PillowDecoder()])
def test_alpha_png(decoder):
    bgra = np.array([[[10, 10, 10, 0], [10, 10, 10, 255]]], dtype=np.uint8)
    grid = decoder.decode(png_bytes(bgra))
    assert grid.alpha(0, 0) == 0
    assert grid.alpha(1, 0) == 255
    assert encode(grid) == b"\x40"


def test_16bit_png_is_scaled_down():
    grid = OpenCVDecoder().decode(png_bytes(np.array([[0x1234, 0xFF00]], dtype=np.uint16)))
    assert [grid.sample(x, 0) for x in range(2)] == [0x12, 0xFF]


def test_gif_through_pillow():
    img = Image.new("L", (3, 1))
    img.putdata([0, 255, 0])
    data = pillow_bytes(img, "GIF")

    for decoder in (PillowDecoder(), AutoDecoder()):
        grid = decoder.decode(data)
        assert [grid.sample(x, 0) for x in range(3)] == [0, 255, 0]


def test_pillow_rgba():
    img = Image.new("RGBA", (2, 1))
    img.putdata([(0, 0, 0, 0), (0, 0, 0, 255)])
    grid = PillowDecoder().decode(pillow_bytes(img, "PNG"))
    assert grid.alpha(0, 0) == 0
    assert encode(grid) == b"\x40"


def test_auto_records_backend():
    decoder = AutoDecoder()
    decoder.decode(png_bytes(np.zeros((2, 2), dtype=np.uint8)))
    assert decoder.used == "opencv"


@pytest.mark.parametrize("decoder", [OpenCVDecoder(), PillowDecoder(), AutoDecoder()])
@pytest.mark.parametrize("data", [b"", b"definitely not an image", png_bytes(np.zeros((4, 4), np.uint8))[:30]])
def test_garbage_raises_decode_error(decoder, data):
    with pytest.raises(DecodeError):
        decoder.decode(data)


def test_get_decoder():
    assert isinstance(get_decoder("opencv"), OpenCVDecoder)
    assert isinstance(get_decoder("pillow"), PillowDecoder)
    assert isinstance(get_decoder(), AutoDecoder)
    with pytest.raises(ValueError):
        get_decoder("imagemagick")


def test_decode_image_shortcut():
    grid = decode_image(png_bytes(np.full((2, 9), 0, dtype=np.uint8)), decoder="pillow")
    assert encode(grid) == b"\xff\x80\xff\x80"
