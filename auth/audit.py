"""
auth/audit.py -- Append-only audit trail of login attempts.

One human-readable line per attempt, shaped for fail2ban-style log watchers:

  2025-03-01T12:00:00.000Z - Failed login: No such user for user 'bob' from IP 10.0.0.7
  2025-03-01T12:00:05.000Z - Failed login: Invalid password for user 'bob' from IP 10.0.0.7
  2025-03-01T12:00:09.000Z - Successful login for user 'bob' from IP 10.0.0.7

Ownership:
  AuditLogger owns its sink for the life of the process. api/main.py opens
  it once in lifespan startup (AuditLogger.open) and closes it on shutdown.
  Tests construct AuditLogger(MemoryAuditSink()) instead.

Atomicity:
  FileAuditSink writes each line with a single os.write() on an O_APPEND
  descriptor. The kernel positions every append at end-of-file, so
  concurrent writers never interleave partial lines and no lock is taken.

Ordering:
  record() is synchronous and never awaits. A request that calls it has
  committed the line before it builds its response, and cancellation of the
  request afterwards cannot undo the write. Lines appear in call order.

Failure:
  A sink error is logged to diagnostics and swallowed. The authentication
  decision already made for the request stands.

Every line is mirrored to the foliogate.audit logger (failures at WARNING,
successes at INFO) so container logs show the same events.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from auth.outcomes import InvalidPassword, NoSuchUser, Outcome, Success

logger = logging.getLogger("foliogate.audit")

# Control characters in a submitted username would let a client forge extra
# log lines. They are written as \xNN escapes instead.
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


class AttemptResult(str, Enum):
    SUCCESS = "success"
    NO_SUCH_USER = "no-such-user"
    INVALID_PASSWORD = "invalid-password"


_FAILURE_REASONS: dict[AttemptResult, str] = {
    AttemptResult.NO_SUCH_USER: "No such user",
    AttemptResult.INVALID_PASSWORD: "Invalid password",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _escape(value: str) -> str:
    return _CONTROL_CHARS.sub(lambda m: f"\\x{ord(m.group()):02x}", value)


@dataclass(frozen=True)
class LoginAttempt:
    """Immutable audit fact for one classified login attempt."""

    username: str
    result: AttemptResult
    source_address: str
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_outcome(cls, outcome: Outcome, username: str, source_address: str) -> LoginAttempt:
        """Build the record for a classified outcome.

        Raises ValueError for LookupFailed: nothing was learned about the
        credentials, so there is no attempt to record.
        """
        if isinstance(outcome, Success):
            result = AttemptResult.SUCCESS
        elif isinstance(outcome, NoSuchUser):
            result = AttemptResult.NO_SUCH_USER
        elif isinstance(outcome, InvalidPassword):
            result = AttemptResult.INVALID_PASSWORD
        else:
            raise ValueError(f"outcome {type(outcome).__name__} is not an auditable login attempt")
        return cls(username=username, result=result, source_address=source_address)

    @property
    def failed(self) -> bool:
        return self.result is not AttemptResult.SUCCESS

    def format_line(self) -> str:
        """Render the newline-terminated audit line."""
        ts = self.timestamp.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        if self.failed:
            head = f"Failed login: {_FAILURE_REASONS[self.result]}"
        else:
            head = "Successful login"
        return f"{ts} - {head} for user '{_escape(self.username)}' from IP {_escape(self.source_address)}\n"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class FileAuditSink:
    """Append-mode file destination. Opened once, held until close()."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fd: int | None = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o640)

    def write_line(self, line: str) -> None:
        if self._fd is None:
            raise OSError(f"audit log {self.path} is closed")
        os.write(self._fd, line.encode("utf-8"))

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None


class MemoryAuditSink:
    """In-process destination for tests. list.append is atomic under the GIL."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def write_line(self, line: str) -> None:
        self.lines.append(line)

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Logger
# ---------------------------------------------------------------------------


class AuditLogger:
    """Records LoginAttempt facts to a sink and mirrors them to diagnostics.

    Usage:
        audit = AuditLogger.open(Path("logs/auth.log"))
        audit.record(LoginAttempt.from_outcome(outcome, "bob", "10.0.0.7"))
        audit.close()
    """

    def __init__(self, sink: FileAuditSink | MemoryAuditSink) -> None:
        self._sink = sink

    @classmethod
    def open(cls, path: Path) -> AuditLogger:
        sink = FileAuditSink(path)
        logger.info("Audit log opened: %s", sink.path)
        return cls(sink)

    def record(self, attempt: LoginAttempt) -> None:
        """Append one line. Never raises on sink failure."""
        line = attempt.format_line()
        try:
            self._sink.write_line(line)
        except OSError:
            logger.exception("Audit log write failed; attempt for %r not persisted", attempt.username)
        if attempt.failed:
            logger.warning(line.rstrip("\n"))
        else:
            logger.info(line.rstrip("\n"))

    def close(self) -> None:
        self._sink.close()
