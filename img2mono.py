# img2mono.py
"""
Convert an image into a raw 1-bit bitmap for a monochrome display.

    img2mono -o logo.bin logo.png

The output has no header: H * ceil(W / 8) bytes, row-major, MSB first.
Pass the width and height to the firmware alongside the included bytes.
"""
import argparse
import os
import stat
import sys
import tempfile

import cv2

from imgdecode import DECODERS, DEFAULT_DECODER, get_decoder
from monopack import (
    THRESHOLD,
    ArgumentError,
    Img2MonoError,
    ImageIOError,
    MonoEncoder,
    unpack_image,
)

__version__ = "0.1.0"

STDIO = "-"


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise ArgumentError(message)


def build_parser() -> argparse.ArgumentParser:
    p = _Parser(
        prog="img2mono",
        description="Convert an image into a raw 1 bit-per-pixel bitmap (MSB first, rows padded to whole bytes)",
    )
    p.add_argument("input", help="Image to convert (- for stdin)")
    p.add_argument("-o", "--output", required=True, help="Path to write the bitmap to (- for stdout)")
    p.add_argument(
        "-t", "--threshold", type=int, default=THRESHOLD,
        help=f"Pixels darker than this become set bits (default: {THRESHOLD})",
    )
    p.add_argument(
        "--invert", action="store_true",
        help="Set bits for pixels at or above the threshold instead of below it",
    )
    p.add_argument(
        "-N", "--no-row-padding", action="store_true",
        help="Don't pad partial bytes at the end of each pixel row",
    )
    p.add_argument(
        "--decoder", choices=sorted(DECODERS), default=DEFAULT_DECODER,
        help=f"Image decoding backend (default: {DEFAULT_DECODER})",
    )
    p.add_argument("-j", "--jobs", type=int, default=1, help="Pack rows on this many threads")
    p.add_argument("--preview", metavar="PNG", help="Also write a PNG rendering of the packed bitmap")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More output (repeat for per-row dump)")
    p.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


# ----------------------------------------------------------------------
# I/O helpers
# ----------------------------------------------------------------------

def read_input(path: str) -> bytes:
    if path == STDIO:
        return sys.stdin.buffer.read()
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise ImageIOError(f"Failed to read input file {path!r}: {e.strerror or e}") from e


def _new_file_mode(path: str) -> int:
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def stage_file(path: str, data: bytes) -> str:
    """
    Write data to a temp file next to path and return the temp path.
    The temp file gets the mode open(path, "wb") would have given path.
    """
    target_dir = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".img2mono-", dir=target_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp_path, _new_file_mode(path))
    except OSError as e:
        discard(tmp_path)
        raise ImageIOError(f"Failed to write output file {path!r}: {e.strerror or e}") from e
    return tmp_path


def commit_file(tmp_path: str, path: str):
    try:
        os.replace(tmp_path, path)
    except OSError as e:
        discard(tmp_path)
        raise ImageIOError(f"Failed to write output file {path!r}: {e.strerror or e}") from e


def discard(tmp_path):
    if tmp_path is not None and os.path.exists(tmp_path):
        os.unlink(tmp_path)


def write_atomic(path: str, data: bytes):
    """Write data to path in one step; a failed write leaves nothing behind."""
    if path == STDIO:
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return
    commit_file(stage_file(path, data), path)


def render_preview(packed: bytes, width: int, height: int, pad_rows: bool) -> bytes:
    ink = unpack_image(packed, width, height, pad_rows=pad_rows)
    img = ((~ink) * 255).astype("uint8")   # ink black, background white
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise ImageIOError("Failed to encode preview PNG")
    return buf.tobytes()


# ----------------------------------------------------------------------
# Main
# ----------------------------------------------------------------------

def run(args) -> int:
    verbosity = -1 if args.quiet else args.verbose

    def say(msg, level=0):
        if verbosity >= level:
            print(f"[img2mono] {msg}", file=sys.stderr)

    if args.jobs < 1:
        raise ArgumentError(f"--jobs must be at least 1, got {args.jobs}")
    if not 0 <= args.threshold <= 255:
        raise ArgumentError(f"--threshold must be in 0..255, got {args.threshold}")
    if args.preview == STDIO:
        raise ArgumentError("--preview needs a file path, not stdout")

    def dump_row(y, packed):
        say(f"row {y}: {packed.hex(' ')}", level=2)

    encoder = MonoEncoder(
        threshold=args.threshold,
        invert=args.invert,
        pad_rows=not args.no_row_padding,
        workers=args.jobs,
        on_row=dump_row if verbosity >= 2 else None,
    )

    data = read_input(args.input)
    say(f"Read {len(data)} bytes from {args.input}", level=1)

    decoder = get_decoder(args.decoder)
    grid = decoder.decode(data)
    say(f"Decoded {grid.width}x{grid.height} with {getattr(decoder, 'used', None) or decoder.name}"
        f"{' (alpha)' if grid.alpha_channel is not None else ''}", level=1)
    say(f"threshold={encoder.threshold} invert={encoder.invert} "
        f"pad_rows={encoder.pad_rows} jobs={encoder.workers}", level=1)

    packed = encoder.encode(grid)

    preview = None
    if args.preview:
        preview = render_preview(packed, grid.width, grid.height, encoder.pad_rows)

    if preview is None:
        write_atomic(args.output, packed)
    elif args.output == STDIO:
        write_atomic(args.preview, preview)
        write_atomic(args.output, packed)
    else:
        # output only lands once the preview is in place
        staged = stage_file(args.output, packed)
        try:
            write_atomic(args.preview, preview)
        except ImageIOError:
            discard(staged)
            raise
        commit_file(staged, args.output)
    if preview is not None:
        say(f"Preview written to {args.preview}", level=1)

    say(f"wrote {args.output} ({grid.width}x{grid.height}, {len(packed)} bytes)")
    return 0


def main(argv=None) -> int:
    try:
        args = build_parser().parse_args(argv)
        return run(args)
    except Img2MonoError as e:
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
