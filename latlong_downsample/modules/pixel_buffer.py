import numpy as np
from typing import Optional


class EquirectangularImage:
    """Fixed-size linear-light RGB image.

    Owns a float32 buffer of shape (height, width, 3) in row-major order.
    The dimensions never change after construction.
    """

    def __init__(self, name: str, width: int, height: int,
                 buffer: Optional[np.ndarray] = None):
        width = int(width)
        height = int(height)
        if width < 1 or height < 1:
            raise ValueError(f"Image dimensions must be positive, got {width}x{height}")

        if buffer is None:
            buffer = np.zeros((height, width, 3), dtype=np.float32)
        else:
            buffer = np.ascontiguousarray(buffer, dtype=np.float32)
            if buffer.shape != (height, width, 3):
                raise ValueError(
                    f"Buffer shape {buffer.shape} does not match {width}x{height} RGB image"
                )

        self.name = name
        self.width = width
        self.height = height
        self.total = width * height
        self._buffer = buffer

    @property
    def buffer(self) -> np.ndarray:
        return self._buffer

    def read_only(self) -> np.ndarray:
        """View of the pixels that raises on write."""
        view = self._buffer.view()
        view.flags.writeable = False
        return view

    def pixel(self, i: int, j: int) -> np.ndarray:
        return self._buffer[j, i].copy()

    def write_rows(self, row_start: int, rows: np.ndarray) -> None:
        """Store a band of finished output rows starting at row_start."""
        row_end = row_start + rows.shape[0]
        if row_start < 0 or row_end > self.height or rows.shape[1:] != (self.width, 3):
            raise ValueError(
                f"Band of shape {rows.shape} at row {row_start} does not fit {self.width}x{self.height} image"
            )
        self._buffer[row_start:row_end] = rows

    def __repr__(self) -> str:
        return f"EquirectangularImage(name={self.name!r}, width={self.width}, height={self.height})"
