"""Audit recorder wiring for the HTTP layer.

Routes obtain the recorder through ``Depends(get_audit_recorder)`` so tests
can swap it with ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging

from ourstreet.adapters.audit_store.base import AbstractAuditStore
from ourstreet.adapters.audit_store.in_memory import InMemoryAuditStore
from ourstreet.adapters.audit_store.jsonl import JsonlAuditStore
from ourstreet.core.config import AuditSettings, settings
from ourstreet.core.errors import ValidationAppError
from ourstreet.services.audit_service import AuditRecorder

logger = logging.getLogger(__name__)


_recorder: AuditRecorder | None = None
_recorder_config: tuple[str, str, float, float, int, int] | None = None


def build_audit_store(cfg: AuditSettings) -> AbstractAuditStore:
    """Instantiate the configured audit store backend.

    Raises:
        ValidationAppError: If the backend name is not recognized.
    """

    backend = cfg.backend.strip().lower()
    if backend == "memory":
        return InMemoryAuditStore(max_events=cfg.max_in_memory)
    if backend == "file":
        return JsonlAuditStore(
            cfg.file_path,
            lock_timeout_seconds=cfg.write_timeout_seconds,
        )

    raise ValidationAppError(
        code="invalid_audit_backend",
        message=f"Unknown audit backend: {cfg.backend!r}",
        details={"hint": "Set AUDIT_BACKEND to 'file' or 'memory'"},
    )


def get_audit_recorder() -> AuditRecorder:
    """Return a process-wide audit recorder.

    The instance is cached in-module. If configuration changes (primarily in
    tests), the recorder is rebuilt.
    """

    global _recorder, _recorder_config

    cfg = settings.audit
    config = (
        cfg.backend,
        cfg.file_path,
        cfg.write_timeout_seconds,
        cfg.read_timeout_seconds,
        cfg.max_in_memory,
        cfg.retention_days,
    )

    if _recorder is None or _recorder_config != config:
        _recorder = AuditRecorder(
            build_audit_store(cfg),
            retention_days=cfg.retention_days,
            write_timeout_seconds=cfg.write_timeout_seconds,
            read_timeout_seconds=cfg.read_timeout_seconds,
        )
        _recorder_config = config
        logger.info("audit.recorder_ready", extra={"backend": cfg.backend})

    return _recorder
