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

"""Logging configuration for VNC Recorder."""

import json
import logging
import sys
from enum import Enum
from typing import Optional, Union


class LogFormat(str, Enum):
    """Supported log output formats."""

    TEXT = "text"
    JSON = "json"


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logger(
    name: str = "vncrecorder",
    level: int = logging.INFO,
    format_string: Optional[str] = None,
    log_format: LogFormat = LogFormat.TEXT,
) -> logging.Logger:
    """
    Setup and configure a logger for VNC Recorder.

    Args:
        name: Logger name
        level: Logging level
        format_string: Custom format string for log messages (text format only)
        log_format: Output format, plain text or one JSON object per line

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # Create console handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if log_format == LogFormat.JSON:
        formatter: logging.Formatter = JSONFormatter()
    else:
        if format_string is None:
            format_string = (
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        formatter = logging.Formatter(format_string)
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    return logger


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_format: Union[LogFormat, str] = LogFormat.TEXT,
) -> logging.Logger:
    """Reconfigure the package logger from CLI or environment settings.

    Args:
        level: Logging level, as an int or a name such as "debug"
        log_format: "text" or "json"

    Returns:
        The reconfigured package logger

    Raises:
        ValueError: If the level or format is not recognized
    """
    if isinstance(level, str):
        name = level
        level = logging.getLevelName(name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {name!r}")
    return setup_logger(level=level, log_format=LogFormat(log_format))


# Default logger instance
logger = setup_logger()
