"""Session storage: on-disk backend, session lifecycle and debounced saves."""

from __future__ import annotations

import errno
import logging
import os
import uuid
from typing import List, Optional

from .config import StorageConfig
from .errors import StorageError, StorageQuotaExceeded
from .models import SCHEMA_VERSION, Session, StorageEnvelope
from .scheduler import Debouncer, ScheduledCall, Scheduler
from .session_io import dumps_envelope, loads_envelope
from .timeutil import Clock, utc_now

logger = logging.getLogger("parley")

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def ensure_structure(base_dir: str) -> dict:
    root = base_dir or os.getcwd()
    paths = {
        "root": root,
        "logs": os.path.join(root, "Logs"),
    }
    for path in paths.values():
        ensure_dir(path)
    return paths


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class FileBackend:
    """JSON document on disk, replaced atomically on every write."""

    def __init__(self, path: str, max_bytes: Optional[int] = None) -> None:
        self.path = path
        self.max_bytes = max_bytes

    def read(self) -> Optional[str]:
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"Cannot read {self.path}: {exc}") from exc

    def write(self, text: str) -> None:
        payload = text.encode("utf-8")
        if self.max_bytes is not None and len(payload) > self.max_bytes:
            raise StorageQuotaExceeded(
                f"{len(payload)} bytes exceeds the {self.max_bytes} byte limit"
            )
        folder = os.path.dirname(os.path.abspath(self.path))
        tmp_path = f"{self.path}.tmp"
        try:
            ensure_dir(folder)
            with open(tmp_path, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            if exc.errno in _QUOTA_ERRNOS:
                raise StorageQuotaExceeded(str(exc)) from exc
            raise StorageError(f"Cannot write {self.path}: {exc}") from exc


class SessionStore:
    """Owns the storage envelope and every session in it.

    In-memory state is always authoritative. Writes go through :meth:`save`,
    which never raises: failures are logged and reflected in
    :attr:`persistence_degraded` until a later save succeeds.
    """

    def __init__(
        self,
        backend: FileBackend,
        config: Optional[StorageConfig] = None,
        clock: Clock = utc_now,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.backend = backend
        self.config = config or StorageConfig()
        self.clock = clock
        self.scheduler = scheduler
        self.envelope = self._default_envelope()
        self.persistence_degraded = False
        self.save_count = 0
        self._dirty = False
        self._autosave: Optional[ScheduledCall] = None
        self._debouncer: Optional[Debouncer] = None
        if scheduler is not None:
            self._debouncer = Debouncer(
                scheduler, self.config.debounce_ms / 1000.0, self._debounced_save
            )

    @classmethod
    def open(
        cls,
        data_dir: str,
        config: Optional[StorageConfig] = None,
        clock: Clock = utc_now,
        scheduler: Optional[Scheduler] = None,
    ) -> "SessionStore":
        config = config or StorageConfig()
        max_bytes = int(config.max_storage_mb * 1024 * 1024) if config.max_storage_mb else None
        backend = FileBackend(os.path.join(data_dir, config.filename), max_bytes=max_bytes)
        store = cls(backend, config=config, clock=clock, scheduler=scheduler)
        store.load()
        return store

    def __enter__(self) -> "SessionStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _default_envelope(self) -> StorageEnvelope:
        return StorageEnvelope(
            current_session_id=None,
            sessions={},
            version=SCHEMA_VERSION,
            settings={
                "autoSaveInterval": int(self.config.autosave_interval_seconds * 1000),
                "maxStorageSizeMB": self.config.max_storage_mb,
            },
        )

    # ---- persistence ----

    def load(self) -> StorageEnvelope:
        try:
            text = self.backend.read()
        except StorageError as exc:
            logger.error("Failed to read conversation storage: %s", exc)
            text = None

        envelope = None
        if text and text.strip():
            try:
                envelope = loads_envelope(text, self.clock)
            except (ValueError, TypeError) as exc:
                logger.error("Conversation storage is corrupt, starting empty: %s", exc)
        if envelope is None:
            envelope = self._default_envelope()
        self.envelope = envelope
        self._dirty = False
        logger.info(
            "Loaded %s sessions (current: %s)",
            len(envelope.sessions),
            envelope.current_session_id,
        )
        return envelope

    def save(self, envelope: Optional[StorageEnvelope] = None) -> bool:
        if envelope is not None:
            self.envelope = envelope
        try:
            self._write()
        except StorageQuotaExceeded as exc:
            logger.warning("Storage quota exceeded, cleaning up old sessions: %s", exc)
            self.cleanup_old_sessions()
            try:
                self._write()
            except (StorageError, TypeError, ValueError) as retry_exc:
                return self._degrade(retry_exc)
        except (StorageError, TypeError, ValueError) as exc:
            return self._degrade(exc)

        self._dirty = False
        self.save_count += 1
        if self.persistence_degraded:
            logger.info("Persistence recovered")
            self.persistence_degraded = False
        return True

    def _write(self) -> None:
        self.backend.write(dumps_envelope(self.envelope))

    def _degrade(self, exc: Exception) -> bool:
        if not self.persistence_degraded:
            logger.warning("Persistence degraded, keeping state in memory: %s", exc)
        self.persistence_degraded = True
        self._dirty = True
        return False

    def request_save(self) -> None:
        self._dirty = True
        if self._debouncer is None:
            self.save()
            return
        self._debouncer.trigger()

    def _debounced_save(self) -> None:
        if self._dirty:
            self.save()

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def save_pending(self) -> bool:
        return self._debouncer is not None and self._debouncer.pending

    def start_autosave(self) -> None:
        interval = self.config.autosave_interval_seconds
        if self.scheduler is None or not interval or interval <= 0:
            return
        if self._autosave is None:
            self._autosave = self.scheduler.call_every(
                interval, self._debounced_save, name="autosave"
            )

    def flush(self) -> bool:
        if self._debouncer is not None:
            self._debouncer.cancel()
        if self._dirty:
            return self.save()
        return True

    def close(self) -> None:
        if self._autosave is not None:
            self._autosave.cancel()
            self._autosave = None
        self.flush()

    def cleanup_old_sessions(self, keep: Optional[int] = None) -> List[str]:
        keep = self.config.max_sessions if keep is None else keep
        keep = max(1, keep)
        ordered = sorted(
            self.envelope.sessions.values(), key=lambda s: s.start_time, reverse=True
        )
        if len(ordered) <= keep:
            return []

        current = self.envelope.current_session_id
        kept_ids = [s.session_id for s in ordered[:keep]]
        if current and current in self.envelope.sessions and current not in kept_ids:
            kept_ids[-1] = current
        removed = [sid for sid in self.envelope.sessions if sid not in kept_ids]
        for sid in removed:
            del self.envelope.sessions[sid]
        self._dirty = True
        logger.info("Removed %s old sessions, kept %s", len(removed), len(kept_ids))
        return removed

    # ---- lifecycle ----

    def get_current_session(self) -> Optional[Session]:
        current = self.envelope.current_session_id
        if not current:
            return None
        return self.envelope.sessions.get(current)

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.envelope.sessions.get(session_id)

    def get_all_sessions(self) -> List[Session]:
        return sorted(
            self.envelope.sessions.values(), key=lambda s: s.start_time, reverse=True
        )

    def _deactivate_current(self) -> None:
        session = self.get_current_session()
        if session is not None and session.is_active:
            session.end_time = self.clock()
            session.is_active = False

    def start_session(self, title: Optional[str] = None) -> Session:
        self._deactivate_current()
        now = self.clock()
        session_id = generate_id("session")
        while session_id in self.envelope.sessions:
            session_id = generate_id("session")
        session = Session(
            session_id=session_id,
            start_time=now,
            is_active=True,
            title=title or f"Conversation {now.astimezone().strftime('%Y-%m-%d %H:%M:%S')}",
            metadata={"environment": "python", "version": SCHEMA_VERSION},
        )
        self.envelope.sessions[session_id] = session
        self.envelope.current_session_id = session_id
        logger.info("Started session %s", session_id)
        self.save()
        return session

    def continue_session(self, session_id: str) -> bool:
        target = self.envelope.sessions.get(session_id)
        if target is None:
            logger.info("Cannot continue unknown session %s", session_id)
            return False
        if self.envelope.current_session_id != session_id:
            self._deactivate_current()
        target.is_active = True
        target.end_time = None
        self.envelope.current_session_id = session_id
        logger.info("Continued session %s", session_id)
        self.save()
        return True

    def end_current_session(self) -> Optional[Session]:
        session = self.get_current_session()
        if session is None:
            return None
        session.end_time = self.clock()
        session.is_active = False
        self.envelope.current_session_id = None
        logger.info("Ended session %s", session.session_id)
        self.save()
        return session
