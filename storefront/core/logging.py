"""
storefront/core/logging.py — loguru setup and the security event logger
Console output goes through loguru (with custom SECURITY and AUDIT levels).
Outside development every entry is also appended as one JSON line to
{logs_dir}/{level}-{YYYY-MM-DD}.log.
"""
from __future__ import annotations

import json
import sys
import threading
import time
from pathlib import Path
from typing import Any, Optional

from fastapi import Request
from loguru import logger

from storefront.models import LogLevel, SecurityEvent, SecurityLogEntry
from storefront.utils.timezone import iso_utc, utc_now

# loguru severities: INFO=20, WARNING=30, ERROR=40
_CUSTOM_LEVELS = (
    ("AUDIT", 25, "<green>"),
    ("SECURITY", 35, "<magenta>"),
)

_LOGURU_LEVEL = {
    LogLevel.INFO: "INFO",
    LogLevel.WARN: "WARNING",
    LogLevel.ERROR: "ERROR",
    LogLevel.SECURITY: "SECURITY",
    LogLevel.AUDIT: "AUDIT",
}

INPUT_PREVIEW_CHARS = 100


def _ensure_custom_levels() -> None:
    for name, severity, color in _CUSTOM_LEVELS:
        try:
            logger.level(name)
        except ValueError:
            logger.level(name, no=severity, color=color)


def setup_logging(log_level: str = "INFO", serialize: bool = False) -> None:
    """
    Configure loguru for stdout. Human-readable lines by default; pass
    serialize=True to have loguru emit its JSON records instead.
    """
    _ensure_custom_levels()
    logger.remove()
    logger.add(
        sys.stdout,
        level=log_level.upper(),
        format="<level>[{level}]</level> {message}",
        serialize=serialize,
        backtrace=True,
        diagnose=False,
        colorize=not serialize,
    )


def _describe_error(error: Any) -> Optional[dict[str, Any]]:
    if error is None:
        return None
    if isinstance(error, BaseException):
        return {"type": type(error).__name__, "message": str(error)}
    return {"message": str(error)}


class SecurityLogger:
    """
    Append-only security/audit trail. One instance per application, built at
    startup and reached through `request.app.state.security_logger`.
    """

    def __init__(self, logs_dir: str | Path = "logs", environment: str = "development") -> None:
        self.logs_dir = Path(logs_dir)
        self.environment = environment
        self._write_lock = threading.Lock()
        _ensure_custom_levels()

    @property
    def writes_files(self) -> bool:
        return self.environment != "development"

    def log_file_for(self, level: LogLevel, day: Optional[str] = None) -> Path:
        day = day or utc_now().strftime("%Y-%m-%d")
        return self.logs_dir / f"{level.value.lower()}-{day}.log"

    # ── core ──────────────────────────────────────────────────────────────────

    def _write(self, entry: SecurityLogEntry) -> None:
        if not self.writes_files:
            return
        line = json.dumps(entry.to_json_dict(), ensure_ascii=False) + "\n"
        path = self.log_file_for(entry.level, entry.timestamp[:10])
        try:
            with self._write_lock:
                self.logs_dir.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
        except OSError as exc:
            logger.error(f"Failed to write security log {path.name}: {exc}")

    def _log(
        self,
        level: LogLevel,
        message: str,
        event: Optional[SecurityEvent | str] = None,
        error: Any = None,
        **context: Any,
    ) -> SecurityLogEntry:
        entry = SecurityLogEntry(
            timestamp=iso_utc(),
            level=level,
            event=event.value if isinstance(event, SecurityEvent) else event,
            message=message,
            error=_describe_error(error),
            **{k: v for k, v in context.items() if v is not None},
        )
        console = message if not entry.data else f"{message} {json.dumps(entry.data, default=str)}"
        logger.opt(depth=2).log(_LOGURU_LEVEL[level], console)
        self._write(entry)
        return entry

    def info(self, message: str, data: Optional[dict[str, Any]] = None) -> None:
        self._log(LogLevel.INFO, message, data=data)

    def warn(self, message: str, data: Optional[dict[str, Any]] = None) -> None:
        self._log(LogLevel.WARN, message, data=data)

    def error(
        self,
        message: str,
        error: Any = None,
        data: Optional[dict[str, Any]] = None,
        **context: Any,
    ) -> None:
        self._log(LogLevel.ERROR, message, error=error, data=data, **context)

    def security(self, event: SecurityEvent | str, message: str, **context: Any) -> None:
        """context: user_id, user_email, ip, user_agent, endpoint, method, status_code, data."""
        self._log(LogLevel.SECURITY, message, event=event, **context)

    def audit(self, event: SecurityEvent | str, message: str, **context: Any) -> None:
        self._log(LogLevel.AUDIT, message, event=event, **context)

    # ── event helpers ─────────────────────────────────────────────────────────

    def login_success(self, user_id: int, email: str, ip: str, user_agent: Optional[str] = None) -> None:
        self.security(
            SecurityEvent.LOGIN_SUCCESS,
            f"Login exitoso: {email}",
            user_id=user_id, user_email=email, ip=ip, user_agent=user_agent,
        )

    def login_failure(self, email: str, ip: str, reason: str, user_agent: Optional[str] = None) -> None:
        self.security(
            SecurityEvent.LOGIN_FAILURE,
            f"Login fallido: {email} - {reason}",
            user_email=email, ip=ip, user_agent=user_agent, data={"reason": reason},
        )

    def logout(self, user_id: int, email: str, ip: str) -> None:
        self.security(SecurityEvent.LOGOUT, f"Logout: {email}", user_id=user_id, user_email=email, ip=ip)

    def register(self, user_id: int, email: str, ip: str) -> None:
        self.security(SecurityEvent.REGISTER, f"Nuevo registro: {email}", user_id=user_id, user_email=email, ip=ip)

    def rate_limit_exceeded(self, ip: str, endpoint: str, user_agent: Optional[str] = None) -> None:
        self.security(
            SecurityEvent.RATE_LIMIT_EXCEEDED,
            f"Rate limit excedido: {endpoint}",
            ip=ip, endpoint=endpoint, user_agent=user_agent,
        )

    def suspicious_activity(
        self,
        kind: str,
        ip: str,
        endpoint: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        payload = {"type": kind, **(data or {})}
        self.security(
            SecurityEvent.SUSPICIOUS_ACTIVITY,
            f"Actividad sospechosa: {kind}",
            ip=ip, endpoint=endpoint, data=payload,
        )

    def sql_injection_attempt(self, ip: str, raw_input: str, endpoint: str) -> None:
        self.security(
            SecurityEvent.SQL_INJECTION_ATTEMPT,
            "Intento de SQL Injection detectado",
            ip=ip, endpoint=endpoint, data={"input": raw_input[:INPUT_PREVIEW_CHARS]},
        )

    def xss_attempt(self, ip: str, raw_input: str, endpoint: str) -> None:
        self.security(
            SecurityEvent.XSS_ATTEMPT,
            "Intento de XSS detectado",
            ip=ip, endpoint=endpoint, data={"input": raw_input[:INPUT_PREVIEW_CHARS]},
        )

    def unauthorized_access(
        self,
        endpoint: str,
        ip: str,
        user_id: Optional[int] = None,
        user_email: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.security(
            SecurityEvent.UNAUTHORIZED_ACCESS,
            f"Acceso no autorizado: {endpoint}",
            user_id=user_id, user_email=user_email, ip=ip, endpoint=endpoint,
            data={"reason": reason} if reason else None,
        )

    def file_upload(self, user_id: int, email: str, filename: str, size: int, ip: str) -> None:
        self.audit(
            SecurityEvent.FILE_UPLOAD,
            f"Archivo subido: {filename}",
            user_id=user_id, user_email=email, ip=ip, data={"filename": filename, "size": size},
        )

    def data_modification(
        self,
        user_id: int,
        email: str,
        entity: str,
        action: str,
        entity_id: int,
        ip: str,
    ) -> None:
        self.audit(
            SecurityEvent.DATA_MODIFICATION,
            f"{action} en {entity} #{entity_id}",
            user_id=user_id, user_email=email, ip=ip,
            data={"entity": entity, "action": action, "entityId": entity_id},
        )

    # ── maintenance ───────────────────────────────────────────────────────────

    def cleanup_old_logs(self, days_to_keep: int = 30) -> int:
        """Delete log files whose mtime is older than `days_to_keep` days."""
        if not self.logs_dir.is_dir():
            return 0
        cutoff = time.time() - days_to_keep * 24 * 60 * 60
        removed = 0
        try:
            for path in self.logs_dir.iterdir():
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info(f"Old log removed: {path.name}")
        except OSError as exc:
            logger.error(f"Log cleanup failed: {exc}")
        return removed


def get_security_logger(request: Request) -> SecurityLogger:
    return request.app.state.security_logger
