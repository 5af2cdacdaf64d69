"""NDJSON session log with sequence numbers and daily rotation."""

from __future__ import annotations

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from .models import ConnectionStatus, Reading


class NdjsonLogger:
    """NDJSON logger for scale status changes and readings.

    Each record is one JSON object per line. In ``regular`` mode debug
    records are dropped unless their message is whitelisted.
    """

    def __init__(self, log_dir: str, file_prefix: str = "scale") -> None:
        self.log_dir = Path(log_dir)
        self.file_prefix = file_prefix
        self.mode = "regular"  # regular or verbose
        self.verbose_whitelist: set[str] = set()

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._seq = 0
        self._current_file: Optional[TextIO] = None
        self._current_date: Optional[str] = None
        self._start_time_ns = time.monotonic_ns()

        self._rotate_if_needed()

    @property
    def current_path(self) -> Optional[Path]:
        if self._current_date is None:
            return None
        return self.log_dir / f"{self.file_prefix}_{self._current_date}.ndjson"

    def log(
        self,
        msg_type: str,
        msg: str,
        device: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a structured message to NDJSON."""
        self._rotate_if_needed()

        if msg_type == "debug" and self.mode == "regular":
            if msg not in self.verbose_whitelist:
                return

        self._seq += 1
        self._write(self._current_file, self._build_record(msg_type, msg, device, data))

    def event(
        self,
        msg: str,
        device: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log an event message."""
        self.log("event", msg, device=device, data=data)

    def status(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log a status message."""
        self.log("status", msg, data=data)

    def error(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log an error message."""
        self.log("error", msg, data=data)

    def debug(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log a debug message (subject to filtering)."""
        self.log("debug", msg, data=data)

    def reading(self, msg: str, reading: Reading, device: Optional[str] = None) -> None:
        """Log a decoded reading as an event."""
        self.event(msg, device=device, data=reading.to_dict())

    def connection(self, status: ConnectionStatus) -> None:
        """Log a connection status change."""
        msg_type = "error" if status.is_failed else "status"
        self.log(msg_type, f"Scale {status.state.value}", data=status.to_dict())

    def close(self) -> None:
        """Close the current log file."""
        if self._current_file:
            self._current_file.close()
            self._current_file = None

    def _build_record(
        self,
        msg_type: str,
        msg: str,
        device: Optional[str],
        data: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        ts_ms = (time.monotonic_ns() - self._start_time_ns) / 1_000_000
        record: Dict[str, Any] = {
            "seq": self._seq,
            "type": msg_type,
            "ts_ms": round(ts_ms, 3),
            "msg": msg,
        }
        if device is not None:
            record["device"] = device
        if data is not None:
            record["data"] = data
        record["hms"] = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        return record

    @staticmethod
    def _write(handle: Optional[TextIO], record: Dict[str, Any]) -> None:
        if handle is None:
            return
        json.dump(record, handle, separators=(",", ":"), ensure_ascii=False)
        handle.write("\n")
        handle.flush()

    def _rotate_if_needed(self) -> None:
        """Rotate log file if date has changed."""
        current_date = datetime.now().strftime("%Y%m%d")
        if self._current_date == current_date:
            return

        if self._current_file:
            self._current_file.close()

        self._current_date = current_date
        self._current_file = self.current_path.open("a", encoding="utf-8", buffering=1)

    def __enter__(self) -> NdjsonLogger:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class DualNdjsonLogger(NdjsonLogger):
    """Writes every record to a per-run debug file as well as the filtered main log."""

    def __init__(self, log_dir: str, debug_dir: str, file_prefix: str = "scale") -> None:
        super().__init__(log_dir, file_prefix)

        self.debug_dir = Path(debug_dir)
        self.debug_dir.mkdir(parents=True, exist_ok=True)

        session = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.debug_path = self.debug_dir / f"{file_prefix}_debug_{session}.ndjson"
        self._debug_seq = 0
        self._debug_file: Optional[TextIO] = self.debug_path.open(
            "a", encoding="utf-8", buffering=1
        )

    def log(
        self,
        msg_type: str,
        msg: str,
        device: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log to the debug file unconditionally, then to the main file."""
        self._debug_seq += 1
        record = self._build_record(msg_type, msg, device, data)
        record["seq"] = self._debug_seq
        self._write(self._debug_file, record)
        super().log(msg_type, msg, device=device, data=data)

    def close(self) -> None:
        """Close both main and debug files."""
        super().close()
        if self._debug_file:
            self._debug_file.close()
            self._debug_file = None
