"""Logging module for Walkscape."""

import json
from datetime import datetime
from typing import Callable, Optional, TextIO

BANNER_WIDTH = 60


class Logger:
    """Timestamped log lines to stdout, an optional file and an optional callback.

    Lines read ``[iso-timestamp] LEVEL message | {json data}``. The callback
    gets ``(message, data)`` and is how the debug GUI mirrors the log.
    """

    def __init__(self, log_path: Optional[str] = None, callback: Optional[Callable] = None,
                 echo: bool = True):
        self.log_path = log_path
        self.callback = callback
        self.echo = echo
        self.file: Optional[TextIO] = open(log_path, "a") if log_path else None
        if self.file:
            rule = "=" * BANNER_WIDTH
            self._write(f"\n{rule}\nWalkscape Log - {datetime.now().isoformat()}\n{rule}\n")

    def _write(self, text: str):
        self.file.write(text + "\n")
        self.file.flush()

    def log(self, message: str, data: Optional[dict] = None, level: str = "INFO"):
        line = f"[{datetime.now().isoformat()}] {level} {message}"
        if data:
            line = f"{line} | {json.dumps(data, default=str)}"
        if self.echo:
            print(line)
        if self.file:
            self._write(line)
        if self.callback:
            self.callback(message, data)

    def warn(self, message: str, data: Optional[dict] = None):
        self.log(message, data, level="WARN")

    def error(self, message: str, data: Optional[dict] = None):
        self.log(message, data, level="ERROR")

    def close(self):
        if self.file:
            self.file.close()
        self.file = None

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, *exc):
        self.close()


class NullLogger(Logger):
    """Discards everything; default for library objects"""

    def __init__(self):
        super().__init__(echo=False)

    def log(self, message: str, data: Optional[dict] = None, level: str = "INFO"):
        pass
