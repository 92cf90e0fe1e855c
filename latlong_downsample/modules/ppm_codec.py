import os
import numpy as np
from typing import BinaryIO, Optional, Tuple

from .color_transfer import decode_srgb_bytes, encode_srgb_bytes
from .pixel_buffer import EquirectangularImage


_WHITESPACE = b" \t\n\r\v\f"
_READ_CHUNK = 1 << 20


class MalformedImageError(ValueError):
    """The file is not a readable 8-bit P6 container."""


class UnsupportedBitDepthError(MalformedImageError):
    pass


class TruncatedImageError(MalformedImageError):
    pass


class _HeaderReader:
    """Byte-at-a-time tokenizer for the ASCII part of a P6 header."""

    def __init__(self, stream: BinaryIO, name: str):
        self.stream = stream
        self.name = name

    def read_byte(self) -> bytes:
        c = self.stream.read(1)
        if not c:
            raise TruncatedImageError(f"EOF while reading from \"{self.name}\".")
        return c

    def read_int(self, field: str) -> int:
        c = self.read_byte()
        # Skip whitespace and comment lines between tokens
        while c in _WHITESPACE or c == b"#":
            if c == b"#":
                while c != b"\n":
                    c = self.read_byte()
            c = self.read_byte()

        digits = b""
        while c.isdigit():
            digits += c
            if len(digits) > 15:
                raise MalformedImageError(f"{field} field too long in \"{self.name}\".")
            c = self.read_byte()
        if not digits:
            raise MalformedImageError(
                f"could not read {field} from image file \"{self.name}\": unexpected {c!r}."
            )
        if c not in _WHITESPACE and c != b"#":
            raise MalformedImageError(
                f"could not read {field} from image file \"{self.name}\": unexpected {c!r}."
            )
        if c == b"#":
            # A comment right after the last field still ends the header line
            while c != b"\n":
                c = self.read_byte()
        return int(digits)


def read_header(stream: BinaryIO, name: str) -> Tuple[int, int, int]:
    """Parse a P6 header and leave the stream at the first pixel byte."""
    if stream.read(2) != b"P6":
        raise MalformedImageError(f"file \"{name}\" not P6 image.")

    reader = _HeaderReader(stream, name)
    width = reader.read_int("width")
    height = reader.read_int("height")
    maxval = reader.read_int("maxval")

    if width == 0 or height == 0 or maxval == 0:
        raise MalformedImageError(f"could not read image file \"{name}\".")
    if maxval != 255:
        raise UnsupportedBitDepthError(
            f"cant read \"{name}\", only 8 bit per channel SRGB supported at the moment."
        )
    return width, height, maxval


def _read_pixels(stream: BinaryIO, count: int, name: str) -> bytearray:
    # Bounded reads: a truncated file fails at EOF, not on allocating the claimed size
    data = bytearray()
    while len(data) < count:
        chunk = stream.read(min(count - len(data), _READ_CHUNK))
        if not chunk:
            raise TruncatedImageError(f"EOF while reading from \"{name}\".")
        data += chunk
    return data


def decode_ppm(stream: BinaryIO, name: str) -> EquirectangularImage:
    width, height, _ = read_header(stream, name)
    data = _read_pixels(stream, width * height * 3, name)

    raw = np.frombuffer(data, dtype=np.uint8).reshape(height, width, 3)
    return EquirectangularImage(name, width, height, decode_srgb_bytes(raw))


def read_ppm(path: str) -> EquirectangularImage:
    """Load a P6 file into a linear-light image.

    Raises OSError when the file cannot be opened and MalformedImageError
    (or a subclass) when its contents are not a complete 8-bit P6 image.
    """
    try:
        stream = open(path, "rb")
    except OSError as e:
        raise OSError(e.errno, f"could not open \"{path}\" file to read: {e.strerror}") from e
    with stream:
        return decode_ppm(stream, path)


def encode_ppm(image: EquirectangularImage) -> bytes:
    header = f"P6 {image.width} {image.height} 255\n".encode("ascii")
    return header + encode_srgb_bytes(image.buffer).tobytes()


def write_ppm(image: EquirectangularImage, path: Optional[str] = None) -> str:
    """Write the image as P6, replacing the target only once fully written."""
    path = path or image.name
    payload = encode_ppm(image)
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "wb") as f:
            f.write(payload)
        os.replace(tmp_path, path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise OSError(e.errno, f"could not open \"{path}\" file to write: {e.strerror}") from e
    return path
