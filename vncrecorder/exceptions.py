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

"""Custom exceptions for VNC Recorder.

This module defines the exception hierarchy used throughout VNC Recorder.
All exceptions inherit from VNCRecorderError for easy catching and handling.

Exception Hierarchy:
    VNCRecorderError (base)
    ├── ConfigurationError - Invalid settings or unusable output directory
    ├── TransportError - Connect, negotiate or read failures on the VNC link
    ├── EncoderError - External encoder (ffmpeg) failures
    │   ├── EncoderLaunchError - Binary missing or process spawn failure
    │   └── EncoderExitError - Encoder exited with a non-zero status
    └── FrameEncodeError - A single frame could not be serialized or written

Propagation:
    FrameEncodeError never leaves a target; it is logged and the frame is
    dropped. EncoderError is retried by the rotating-file target and ends
    the session for the segmented target. TransportError ends the session
    and is retried by the daemon supervisor with backoff.

Example:
    try:
        await orchestrator.run()
    except TransportError:
        # Host unreachable or connection dropped
        pass
    except VNCRecorderError:
        # Catch all VNC Recorder errors
        pass
"""

from __future__ import annotations

from typing import Optional


class VNCRecorderError(Exception):
    """Base exception for all VNC Recorder errors."""
    pass


class ConfigurationError(VNCRecorderError):
    """Exception raised for configuration errors.

    Examples:
        - Frame rate is zero or negative
        - Unknown output format
        - Output directory cannot be created
    """
    pass


class TransportError(VNCRecorderError):
    """Exception raised when the VNC connection fails.

    Covers the TCP connect (including its timeout), the RFB handshake and
    security negotiation, and errors raised while reading server messages.

    Attributes:
        host: VNC host the session targeted
        port: VNC port the session targeted
    """

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.host = host
        self.port = port

    @property
    def address(self) -> Optional[str]:
        if self.host is None:
            return None
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        if self.host is not None:
            return f"{self.message} ({self.address})"
        return self.message


class EncoderError(VNCRecorderError):
    """Base exception for external encoder failures."""
    pass


class EncoderLaunchError(EncoderError):
    """Exception raised when the encoder cannot be started.

    Examples:
        - ffmpeg binary not found on PATH or at the configured location
        - Permission denied executing the binary
        - Process spawn failed
    """
    pass


class EncoderExitError(EncoderError):
    """Exception raised when the encoder exits with a non-zero status."""

    def __init__(self, returncode: int, args: Optional[list] = None) -> None:
        super().__init__(f"ffmpeg exited with status {returncode}")
        self.returncode = returncode
        self.command = list(args or [])


class FrameEncodeError(VNCRecorderError):
    """Exception raised when a single frame cannot be serialized.

    Never fatal: targets log it and continue with the next frame.
    """
    pass
