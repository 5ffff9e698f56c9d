"""
Flüchtiger Key-Value-Speicher mit Ablaufzeit.

Zwei Instanzen laufen pro Prozess: Upload-Metadaten (Schlüssel = Upload-ID)
und Analyse-Ergebnisse (Schlüssel = Stripe-Session-ID). Abgelaufene Einträge
werden beim Lesen entfernt und zusätzlich periodisch vom CacheSweeper.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 60 * 60 * 1000


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float  # Sekunden seit Epoch

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class TTLCache:
    """Thread-sicherer Speicher mit lazy Expiry

    on_expire wird nach dem Entfernen eines abgelaufenen Eintrags aufgerufen
    (außerhalb des Locks), z.B. um die zugehörige Datei zu löschen.
    """

    def __init__(self, name: str = 'cache', clock: Callable[[], float] = time.time,
                 on_expire: Optional[Callable[[str, Any], None]] = None):
        self.name = name
        self._clock = clock
        self._on_expire = on_expire
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: Any, ttl_ms: Optional[int] = None) -> float:
        """Speichert den Wert und liefert den Ablaufzeitpunkt (Sekunden seit Epoch)"""
        ttl_ms = DEFAULT_TTL_MS if ttl_ms is None else ttl_ms
        expires_at = self._clock() + ttl_ms / 1000.0
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=expires_at)
        return expires_at

    def get(self, key: str) -> Optional[Any]:
        """Liefert den Wert oder None; abgelaufene Einträge werden dabei gelöscht"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_expired(self._clock()):
                return entry.value
            del self._entries[key]
        self._expired(entry)
        return None

    def expires_at(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry.expires_at

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def cleanup(self, predicate: Optional[Callable[[str, Any], bool]] = None) -> int:
        """Ein Durchlauf: entfernt abgelaufene Einträge und solche, für die predicate True liefert"""
        now = self._clock()
        removed = []
        with self._lock:
            for key, entry in list(self._entries.items()):
                if entry.is_expired(now) or (predicate and predicate(key, entry.value)):
                    del self._entries[key]
                    removed.append(entry)
        for entry in removed:
            self._expired(entry)
        return len(removed)

    def _expired(self, entry: CacheEntry) -> None:
        if not self._on_expire:
            return
        try:
            self._on_expire(entry.key, entry.value)
        except Exception:
            logger.exception("%s: on_expire für %s fehlgeschlagen", self.name, entry.key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class CacheSweeper:
    """Hintergrund-Thread, der in festem Intervall alle Caches aufräumt"""

    def __init__(self, caches: Iterable[TTLCache], interval_s: float = 600.0):
        self.caches = list(caches)
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self) -> int:
        removed = 0
        for cache in self.caches:
            try:
                count = cache.cleanup()
            except Exception:
                logger.exception("Cleanup-Fehler in %s", cache.name)
                continue
            if count:
                logger.debug("%s: %d abgelaufene Einträge entfernt", cache.name, count)
            removed += count
        return removed

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            self.sweep()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='cache-sweeper', daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
