"""
Historical price storage for volatility estimation.

Two stores implement the HistoricalDataProvider interface:
- InMemoryHistoryStore: process-local, used by tests and the CLI
- CSVHistoryStore: one append-only CSV per instrument
"""
import asyncio
import csv
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import pandas as pd

from ..config import HISTORY_RETENTION_DAYS, HISTORY_WINDOW_DAYS, OUTPUT_DIR
from ..errors import InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataPoint:
    """A single historical observation for an instrument."""
    price: float
    volume: float
    timestamp: datetime


class HistoricalDataProvider(Protocol):
    """Time-series store queried by instrument and look-back window."""

    async def get_historical_data(
        self, instrument_id: str, window_days: int = HISTORY_WINDOW_DAYS
    ) -> List[DataPoint]:
        ...

    async def store_data_point(self, instrument_id: str, point: DataPoint) -> None:
        ...


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _cutoff(days: int, now: Optional[datetime] = None) -> datetime:
    now = _as_utc(now) if now else datetime.now(timezone.utc)
    return now - timedelta(days=days)


class InMemoryHistoryStore:
    """Thread-safe in-memory history keyed by instrument."""

    def __init__(self):
        self._lock = threading.Lock()
        self._points: Dict[str, List[DataPoint]] = defaultdict(list)

    async def store_data_point(self, instrument_id: str, point: DataPoint) -> None:
        point = DataPoint(point.price, point.volume, _as_utc(point.timestamp))
        with self._lock:
            self._points[instrument_id].append(point)

    async def get_historical_data(
        self,
        instrument_id: str,
        window_days: int = HISTORY_WINDOW_DAYS,
        now: Optional[datetime] = None
    ) -> List[DataPoint]:
        """Points newer than the window cutoff, in insertion order."""
        cutoff = _cutoff(window_days, now)
        with self._lock:
            points = list(self._points.get(instrument_id, ()))
        return [p for p in points if p.timestamp >= cutoff]

    async def clear_old_data(
        self,
        older_than_days: int = HISTORY_RETENTION_DAYS,
        now: Optional[datetime] = None
    ) -> int:
        """Drop points older than the retention window. Returns count removed."""
        cutoff = _cutoff(older_than_days, now)
        removed = 0
        with self._lock:
            for instrument_id, points in self._points.items():
                kept = [p for p in points if p.timestamp >= cutoff]
                removed += len(points) - len(kept)
                self._points[instrument_id] = kept
        return removed


class CSVHistoryStore:
    """Thread-safe CSV history, one file per instrument."""

    COLUMNS = ["timestamp", "price", "volume"]

    def __init__(self, output_dir: Path = OUTPUT_DIR / "history"):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_filename(self, instrument_id: str) -> Path:
        """Generate filename for the given instrument."""
        safe_id = "".join(c if c.isalnum() or c in "-_." else "_" for c in instrument_id)
        return self.output_dir / f"history_{safe_id or 'unknown'}.csv"

    def _append(self, instrument_id: str, point: DataPoint) -> None:
        path = self._get_filename(instrument_id)
        with self._lock:
            file_exists = path.exists()
            with open(path, "a", newline="") as handle:
                writer = csv.writer(handle)
                if not file_exists:
                    writer.writerow(self.COLUMNS)
                    logger.info(f"Created new history file: {path}")
                writer.writerow([
                    _as_utc(point.timestamp).isoformat(),
                    f"{point.price:.6f}",
                    f"{point.volume:.4f}",
                ])

    async def store_data_point(self, instrument_id: str, point: DataPoint) -> None:
        """Append a data point. File I/O runs in a worker thread."""
        if point.price < 0 or point.volume < 0:
            raise InvalidInputError(
                f"Data point for {instrument_id} has negative price or volume"
            )
        await asyncio.to_thread(self._append, instrument_id, point)

    def _read_frame(self, instrument_id: str) -> pd.DataFrame:
        path = self._get_filename(instrument_id)
        if not path.exists():
            return pd.DataFrame(columns=self.COLUMNS)
        frame = pd.read_csv(path)
        frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True, format="ISO8601")
        return frame

    def _read_window(self, instrument_id: str, cutoff: datetime) -> List[DataPoint]:
        with self._lock:
            frame = self._read_frame(instrument_id)

        if frame.empty:
            return []

        frame = frame[frame["timestamp"] >= pd.Timestamp(cutoff)]
        return [
            DataPoint(
                price=float(row.price),
                volume=float(row.volume),
                timestamp=row.timestamp.to_pydatetime(),
            )
            for row in frame.itertuples(index=False)
        ]

    async def get_historical_data(
        self,
        instrument_id: str,
        window_days: int = HISTORY_WINDOW_DAYS,
        now: Optional[datetime] = None
    ) -> List[DataPoint]:
        return await asyncio.to_thread(
            self._read_window, instrument_id, _cutoff(window_days, now)
        )

    def _rewrite_all(self, cutoff: datetime) -> int:
        cutoff = pd.Timestamp(cutoff)
        removed = 0
        with self._lock:
            for path in self.output_dir.glob("history_*.csv"):
                frame = pd.read_csv(path)
                stamps = pd.to_datetime(frame["timestamp"], utc=True, format="ISO8601")
                keep = stamps >= cutoff
                removed += int((~keep).sum())
                frame[keep].to_csv(path, index=False)
        return removed

    async def clear_old_data(
        self,
        older_than_days: int = HISTORY_RETENTION_DAYS,
        now: Optional[datetime] = None
    ) -> int:
        """Rewrite every history file without rows past retention."""
        removed = await asyncio.to_thread(self._rewrite_all, _cutoff(older_than_days, now))
        if removed:
            logger.info(f"Removed {removed} history rows older than {older_than_days} days")
        return removed
