"""Logging setup for slack-mcp-server.

Every record goes to stderr. When Supabase credentials are configured,
records are also shipped, in batches, to a Supabase table as structured
rows. Credentials that end up in a message (Slack tokens, JWTs, client
secrets) are masked before any handler sees them.
"""

import atexit
import logging
import re
import sys
import threading
from datetime import datetime, timezone
from typing import Optional

# xoxb-/xoxp-/xoxa-... Slack tokens, compact JWTs, and key=value secrets
_SECRET_PATTERNS = [
    (re.compile(r"\bxox[abeoprs]-[A-Za-z0-9-]+"), "xox?-***"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"), "<jwt>"),
    (re.compile(r"(client_secret|code_verifier|refresh_token|access_token)=([^&\s]+)"), r"\1=***"),
]
_TAG_RE = re.compile(r"\[([A-Z_]+)\]\s*(.*)", re.DOTALL)


def redact(text: str) -> str:
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Masks credentials in the rendered message of every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """Turns a record into a row for the logs table.

    A leading "[TAG]" in the message (the convention used throughout the
    server: [AUTHORIZE], [CALLBACK], [TOKEN], ...) becomes its own column.
    """

    def __init__(self, service_name: str = None):
        super().__init__()
        self.service_name = service_name or "slack-mcp-server"

    def format(self, record: logging.LogRecord) -> dict:
        message = record.getMessage()
        tag = None
        match = _TAG_RE.match(message)
        if match:
            tag, message = match.group(1), match.group(2)

        row = {
            "service": self.service_name,
            "created_at": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "tag": tag,
            "message": message,
            "logger": record.name,
            "extra": {"function": record.funcName, "line": record.lineno},
        }
        if record.exc_info:
            row["extra"]["exception"] = self.formatException(record.exc_info)
        return row


class PlainFormatter(logging.Formatter):
    """Human-readable lines for stderr."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class SupabaseHandler(logging.Handler):
    """Buffers formatted rows and inserts them into Supabase in batches.

    The buffer is sent when it reaches batch_size, every flush_interval
    seconds from a daemon thread, and on close(). A failed insert drops the
    batch and reports to stderr; it never raises into the caller.
    """

    def __init__(
        self,
        supabase_client,
        service_name: str,
        batch_size: int = 20,
        flush_interval: float = 10.0,
        table: str = "logs",
    ):
        super().__init__()
        self.supabase = supabase_client
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.table = table
        self.setFormatter(JSONFormatter(service_name))

        self._buffer: list = []
        self._buffer_lock = threading.Lock()
        self._stopped = threading.Event()
        self._worker = threading.Thread(target=self._run, name="supabase-log-flusher", daemon=True)
        self._worker.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord):
        try:
            row = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._buffer.append(row)
            full = len(self._buffer) >= self.batch_size
        if full:
            self.flush()

    def _run(self):
        while not self._stopped.wait(self.flush_interval):
            self.flush()

    def flush(self):
        with self._buffer_lock:
            rows, self._buffer = self._buffer, []
        if not rows or not self.supabase:
            return
        try:
            self.supabase.table(self.table).insert(rows).execute()
        except Exception as e:
            # Going through logging here would re-enter this handler
            print(f"[WARNING] Dropped {len(rows)} log rows, Supabase insert failed: {e}", file=sys.stderr)

    def close(self):
        if not self._stopped.is_set():
            self._stopped.set()
            self.flush()
        super().close()


_supabase_handler: Optional[SupabaseHandler] = None


def setup_logging(
    service_name: str = None,
    supabase_client=None,
    level: int = logging.INFO,
) -> logging.Logger:
    """Install stderr logging and, if a client is given, Supabase shipping.

    Replaces any handlers already on the root logger. Returns the root logger.
    """
    global _supabase_handler

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    redacting = RedactingFilter()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(PlainFormatter())
    stderr_handler.addFilter(redacting)
    root_logger.addHandler(stderr_handler)

    if supabase_client:
        try:
            _supabase_handler = SupabaseHandler(supabase_client, service_name=service_name)
        except Exception as e:
            print(f"[WARNING] Supabase logging setup failed: {e}", file=sys.stderr)
        else:
            _supabase_handler.addFilter(redacting)
            root_logger.addHandler(_supabase_handler)

    # Supabase and the MCP SDK both log every HTTP request through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    if _supabase_handler is not None and _supabase_handler in root_logger.handlers:
        logger.info(f"[STARTUP] Shipping logs to Supabase as service: {service_name}")
    else:
        logger.info("[STARTUP] Supabase logging disabled, logging to stderr only")

    return root_logger


def flush_logs():
    """Push any buffered rows to Supabase now."""
    if _supabase_handler:
        _supabase_handler.flush()
