# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""PPM serialization of captured frames.

ffmpeg reads frames from stdin with ``-f image2pipe -vcodec ppm``: each frame
is a self-describing binary PPM (P6) record made of an ASCII header carrying
width, height and the maximum sample value, followed by raw RGB samples.

Three input layouts are supported:
- RGB ``numpy`` arrays, written as-is
- RGBA/RGBX ``numpy`` arrays, alpha stripped into a reusable scratch buffer
- anything Pillow understands (``PIL.Image.Image``), converted to RGB
"""

from __future__ import annotations

from typing import Any, Optional, Tuple

import numpy as np
from PIL import Image

from vncrecorder.exceptions import FrameEncodeError

MAX_SAMPLE_VALUE = 255


def ppm_header(width: int, height: int) -> bytes:
    """Build the P6 header for a frame of the given size."""
    return f"P6\n{width} {height}\n{MAX_SAMPLE_VALUE}\n".encode("ascii")


class PixelStreamEncoder:
    """Convert frames into PPM records.

    Each instance owns a scratch buffer used to strip the alpha channel from
    RGBA frames. The buffer is allocated on first use and reallocated only
    when the frame size changes, so one encoder must not be shared between
    targets that encode concurrently.
    """

    def __init__(self) -> None:
        self._scratch: Optional[np.ndarray] = None

    def encode(self, frame: Any) -> Tuple[bytes, memoryview]:
        """Serialize one frame.

        Args:
            frame: ``numpy`` array of shape (height, width, 3 or 4) and dtype
                uint8, or a ``PIL.Image.Image``

        Returns:
            The PPM header and a view of the RGB payload. The payload may
            point into the scratch buffer and is only valid until the next
            call.

        Raises:
            FrameEncodeError: If the frame is missing or has an unsupported layout
        """
        if frame is None:
            raise FrameEncodeError("nil image")

        if isinstance(frame, np.ndarray):
            if frame.dtype == np.uint8 and frame.ndim == 3:
                if frame.shape[2] == 3:
                    return self._encode_rgb(frame)
                if frame.shape[2] == 4:
                    return self._encode_rgba(frame)
            try:
                frame = Image.fromarray(frame)
            except (TypeError, ValueError) as e:
                raise FrameEncodeError(
                    f"unsupported frame layout shape={frame.shape} dtype={frame.dtype}: {e}"
                )

        if isinstance(frame, Image.Image):
            return self._encode_generic(frame)

        raise FrameEncodeError(f"unsupported frame type {type(frame).__name__}")

    def _encode_rgb(self, frame: np.ndarray) -> Tuple[bytes, memoryview]:
        height, width = frame.shape[:2]
        pixels = np.ascontiguousarray(frame)
        return ppm_header(width, height), memoryview(pixels).cast("B")

    def _encode_rgba(self, frame: np.ndarray) -> Tuple[bytes, memoryview]:
        height, width = frame.shape[:2]
        if self._scratch is None or self._scratch.shape[:2] != (height, width):
            self._scratch = np.empty((height, width, 3), dtype=np.uint8)
        np.copyto(self._scratch, frame[:, :, :3])
        return ppm_header(width, height), memoryview(self._scratch).cast("B")

    def _encode_generic(self, image: Image.Image) -> Tuple[bytes, memoryview]:
        if image.mode != "RGB":
            try:
                image = image.convert("RGB")
            except (ValueError, OSError) as e:
                raise FrameEncodeError(f"cannot convert {image.mode} image to RGB: {e}")
        width, height = image.size
        return ppm_header(width, height), memoryview(image.tobytes())
