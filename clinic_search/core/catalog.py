"""Read-mostly, periodically refreshed in-memory view of the clinic catalog."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from clinic_search.core.db import ClinicDatabase
from clinic_search.etl.transform import to_clinics
from clinic_search.models import Clinic

logger = logging.getLogger(__name__)


class CatalogUnavailableError(RuntimeError):
    """Raised when no catalog snapshot has ever been loaded."""


class CatalogSource(Protocol):
    def fetch(self) -> List[Clinic]:
        ...


class DatabaseCatalogSource:
    def __init__(self, database: ClinicDatabase) -> None:
        self._database = database

    def fetch(self) -> List[Clinic]:
        return to_clinics(self._database.fetch_clinic_rows())

    def close(self) -> None:
        self._database.close()


class JsonFileCatalogSource:
    """Seed catalog stored as a JSON list (or ``{"clinics": [...]}``)."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    def fetch(self) -> List[Clinic]:
        with self._path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
        rows = payload.get("clinics", []) if isinstance(payload, dict) else payload
        return to_clinics(rows)


@dataclass(frozen=True)
class _Snapshot:
    clinics: Tuple[Clinic, ...]
    by_id: Dict[str, Clinic]
    loaded_at: float


class CatalogSnapshot:
    """Atomic-swap snapshot: readers see the old or the new catalog, never a mix.

    A failed refresh keeps serving the last good snapshot and records the
    error for diagnostics.
    """

    def __init__(
        self,
        source: CatalogSource,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        retry_seconds: float = 30,
    ) -> None:
        self._source = source
        self._ttl_seconds = ttl_seconds
        self._retry_seconds = retry_seconds
        self._retry_at = 0.0
        self._clock = clock
        self._snapshot: Optional[_Snapshot] = None
        self._refresh_lock = threading.Lock()
        self._stale = False
        self.last_error: Optional[str] = None

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def refresh(self) -> bool:
        """Reload the catalog from the source; returns True on success."""
        with self._refresh_lock:
            return self._refresh_locked()

    def _refresh_locked(self) -> bool:
        try:
            clinics = tuple(self._source.fetch())
        except Exception as exc:  # noqa: BLE001
            self.last_error = str(exc)
            self._retry_at = self._clock() + self._retry_seconds
            if self._snapshot is None:
                logger.error("Catalog load failed and no snapshot is available: %s", exc)
            else:
                logger.warning("Catalog refresh failed, serving stale snapshot: %s", exc)
            return False

        by_id = {clinic.id: clinic for clinic in clinics}
        self._snapshot = _Snapshot(clinics=clinics, by_id=by_id, loaded_at=self._clock())
        self._stale = False
        self.last_error = None
        self._retry_at = 0.0
        logger.info("Catalog snapshot loaded with %d clinics", len(clinics))
        return True

    def ensure_loaded(self) -> None:
        if self._snapshot is None and not self.refresh():
            raise CatalogUnavailableError(f"clinic catalog could not be loaded: {self.last_error}")

    def invalidate(self) -> None:
        """Mark the snapshot stale so the next read reloads it."""
        self._stale = True
        self._retry_at = 0.0

    def _maybe_refresh(self) -> None:
        snapshot = self._snapshot
        expired = snapshot is None or self._stale or self._clock() - snapshot.loaded_at >= self._ttl_seconds
        if not expired:
            return
        if snapshot is not None and self._clock() < self._retry_at:
            return
        # Only one reader reloads; the rest keep the current snapshot.
        if self._refresh_lock.acquire(blocking=snapshot is None):
            try:
                current = self._snapshot
                if current is snapshot:
                    self._refresh_locked()
            finally:
                self._refresh_lock.release()

    def _current(self) -> _Snapshot:
        self._maybe_refresh()
        snapshot = self._snapshot
        if snapshot is None:
            raise CatalogUnavailableError(f"clinic catalog is not loaded: {self.last_error}")
        return snapshot

    def all(self) -> Tuple[Clinic, ...]:
        return self._current().clinics

    def get(self, clinic_id: str) -> Optional[Clinic]:
        return self._current().by_id.get(clinic_id)

    def stats(self) -> Dict[str, object]:
        snapshot = self._snapshot
        if snapshot is None:
            return {"loaded": False, "size": 0, "ageSeconds": None, "lastError": self.last_error}
        return {
            "loaded": True,
            "size": len(snapshot.clinics),
            "ageSeconds": round(self._clock() - snapshot.loaded_at, 1),
            "lastError": self.last_error,
        }


class CatalogRefresher:
    """Background thread that rebuilds the snapshot on a fixed interval."""

    def __init__(self, catalog: CatalogSnapshot, interval_seconds: float) -> None:
        self._catalog = catalog
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None or self._interval <= 0:
            return
        self._thread = threading.Thread(target=self._run, name="catalog-refresher", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self._catalog.refresh()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
