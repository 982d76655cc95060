from __future__ import annotations

import shutil
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

import yaml

from .errors import BookingStorageError
from .venues import Venue

EVENT_VENUE_CREATED = "VENUE_CREATED"
EVENT_BOOKING_CREATED = "BOOKING_CREATED"
EVENT_BOOKING_CANCELLED = "BOOKING_CANCELLED"
EVENT_SEATS_BOOKED = "SEATS_BOOKED"
EVENT_CAPACITY_RESIZED = "CAPACITY_RESIZED"
EVENT_SEAT_PRICES_RESET = "SEAT_PRICES_RESET"
EVENT_SEAT_UPDATED = "SEAT_UPDATED"
EVENT_DEFAULT_PRICE_CHANGED = "DEFAULT_PRICE_CHANGED"
EVENT_YAML_RECOVERED = "YAML_RECOVERED"
EVENT_YAML_ROW_SKIPPED = "YAML_ROW_SKIPPED"

_EMPTY_DOCUMENT = "[]\n"


class VenueYamlRepository:
    """Stores whole venue aggregates (seats and bookings inline) in one YAML list.

    Every save rewrites the venue document from a snapshot of the in-memory
    aggregate, so a write is atomic per venue. Unreadable files are copied
    aside and reset to an empty list rather than failing the load.
    """

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.venues_file = self.base_dir / "venues.yaml"
        self.log_file = self.base_dir / "booking_events.yaml"
        self._write_lock = threading.RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.venues_file, self.log_file):
            if not path.exists():
                path.write_text(_EMPTY_DOCUMENT, encoding="utf-8")

    def _load_rows(self, path: Path) -> list[Any]:
        if not path.exists():
            path.write_text(_EMPTY_DOCUMENT, encoding="utf-8")
            return []
        try:
            document = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._quarantine(path, str(error))
            return []

        if document is None:
            return []
        if isinstance(document, list):
            return document
        self._quarantine(path, f"expected a YAML list, found {type(document).__name__}")
        return []

    def _mappings(self, path: Path) -> Iterator[tuple[int, dict[str, Any]]]:
        for index, row in enumerate(self._load_rows(path)):
            if isinstance(row, dict):
                yield index, row
            else:
                self._skip_row(path, index, "row is not a mapping")

    def _skip_row(self, path: Path, index: int, reason: str) -> None:
        if path == self.log_file:
            return
        self.log_event(EVENT_YAML_ROW_SKIPPED, {"file": path.name, "index": index, "reason": reason})

    def _dump_rows(self, path: Path, rows: list[dict[str, Any]]) -> None:
        staging = path.with_name(f".{path.name}.tmp")
        try:
            with staging.open("w", encoding="utf-8") as stream:
                yaml.safe_dump(rows, stream, allow_unicode=True, sort_keys=False)
            staging.replace(path)
        except OSError as error:
            staging.unlink(missing_ok=True)
            raise BookingStorageError(f"Could not write {path}") from error

    def _quarantine(self, path: Path, reason: str) -> None:
        backup: Path | None = path.with_name(f"{path.stem}.corrupt.{datetime.now():%Y%m%d%H%M%S}{path.suffix}")
        try:
            shutil.copy2(path, backup)
        except OSError:
            # The unreadable file is replaced either way; the event records the missing copy.
            backup = None

        path.write_text(_EMPTY_DOCUMENT, encoding="utf-8")
        # The event log cannot record its own reset.
        if path != self.log_file:
            self.log_event(
                EVENT_YAML_RECOVERED,
                {"file": path.name, "backup": backup.name if backup else None, "reason": reason},
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        entry = {
            "event_time": (event_time or datetime.now()).isoformat(timespec="seconds"),
            "event_type": event_type,
            "payload": payload,
        }
        with self._write_lock:
            self._dump_rows(self.log_file, [row for _, row in self._mappings(self.log_file)] + [entry])

    def get_events(self) -> list[dict[str, Any]]:
        return [row for _, row in self._mappings(self.log_file)]

    def load_venues(self) -> list[Venue]:
        venues: list[Venue] = []
        for index, row in self._mappings(self.venues_file):
            try:
                venues.append(Venue.from_dict(row))
            except (KeyError, TypeError, ValueError) as error:
                self._skip_row(self.venues_file, index, str(error))
        return venues

    def get_venue(self, venue_id: str) -> Venue | None:
        return next((venue for venue in self.load_venues() if venue.venue_id == venue_id), None)

    def save_venue(
        self,
        venue: Venue,
        event_type: str | None = None,
        payload: dict[str, Any] | None = None,
        event_time: datetime | None = None,
    ) -> None:
        with self._write_lock:
            document = venue.to_dict()
            rows = [row for _, row in self._mappings(self.venues_file)]
            for index, row in enumerate(rows):
                if str(row.get("venue_id")) == venue.venue_id:
                    rows[index] = document
                    break
            else:
                rows.append(document)
            self._dump_rows(self.venues_file, rows)

            if event_type is not None:
                self.log_event(event_type, {"venue_id": venue.venue_id, **(payload or {})}, event_time)
