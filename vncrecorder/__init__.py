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

"""
VNC Recorder - record a remote framebuffer session to video.

Frames are captured from a VNC session at a fixed cadence and piped into an
ffmpeg subprocess that produces either rotating MP4 files or a live HLS
playlist with bounded retention. A daemon mode reconnects with exponential
backoff whenever the connection is lost.
"""

__version__ = "0.3.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from vncrecorder.config import OutputFormat, RecorderConfig
from vncrecorder.core.orchestrator import SessionOrchestrator, SessionState
from vncrecorder.core.shutdown import ShutdownWatcher
from vncrecorder.core.supervisor import BackoffState, DaemonSupervisor
from vncrecorder.core.targets import (
    RecordingTarget,
    RotatingFileTarget,
    SegmentedStreamTarget,
    create_target,
)

__all__ = [
    # Configuration
    "OutputFormat",
    "RecorderConfig",
    # Session lifecycle
    "BackoffState",
    "DaemonSupervisor",
    "SessionOrchestrator",
    "SessionState",
    "ShutdownWatcher",
    # Targets
    "RecordingTarget",
    "RotatingFileTarget",
    "SegmentedStreamTarget",
    "create_target",
]
