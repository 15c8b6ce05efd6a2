from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Sequence

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import (
    BatchLogRecordProcessor,
    LogExporter,
    LogExportResult,
)

from .config import Settings, settings

# source location attributes the OTel logging handler adds to every record
_DROPPED_ATTRIBUTES = ("code.filepath", "code.function", "code.lineno", "code.file.path", "code.function.name", "code.line.number")
STREAM_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_provider: LoggerProvider | None = None


def log_line(record: Any) -> dict[str, Any]:
    """One gateway log record as a JSON-serializable dict."""
    ts_ns = getattr(record, "timestamp", None)
    if isinstance(ts_ns, int) and ts_ns > 0:
        ts = datetime.fromtimestamp(ts_ns / 1_000_000_000, tz=timezone.utc)
    else:
        ts = datetime.now(timezone.utc)
    attrs = {str(k): v for k, v in (record.attributes or {}).items() if k not in _DROPPED_ATTRIBUTES}
    return {
        "ts": ts.isoformat(),
        "severity": getattr(record.severity_text, "value", None) or str(record.severity_text),
        "message": record.body if isinstance(record.body, str) else str(record.body),
        # broker, topic, qos, kind ... from extra={...}
        "attributes": attrs,
    }


class JsonLinesLogExporter(LogExporter):
    """Appends log records to a file, one JSON object per line.

    The file is opened on the first export and kept open until shutdown.
    """

    def __init__(self, file_path: str | Path):
        self._path = Path(file_path)
        self._file: IO[str] | None = None
        self._lock = threading.Lock()

    def export(self, batch: Sequence) -> LogExportResult:
        try:
            lines = [json.dumps(log_line(item.log_record), ensure_ascii=False, default=str) for item in batch]
            if lines:
                with self._lock:
                    if self._file is None:
                        self._path.parent.mkdir(parents=True, exist_ok=True)
                        self._file = self._path.open("a", encoding="utf-8")
                    self._file.write("\n".join(lines) + "\n")
                    self._file.flush()
            return LogExportResult.SUCCESS
        except (OSError, TypeError, ValueError):
            return LogExportResult.FAILURE

    def shutdown(self):
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


def setup_observability(cfg: Settings = settings) -> None:
    """Route the root logger to the JSON-lines file and to stdout."""
    global _provider
    if _provider is not None:
        return

    _provider = LoggerProvider(resource=Resource.create({"service.name": cfg.otel_service_name}))
    _provider.add_log_record_processor(BatchLogRecordProcessor(JsonLinesLogExporter(cfg.otel_log_file)))

    level = getattr(logging, cfg.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=_provider))

    stream = logging.StreamHandler()
    stream.setLevel(level)
    stream.setFormatter(logging.Formatter(STREAM_FORMAT))
    root_logger.addHandler(stream)

    # paho logs every packet at DEBUG
    logging.getLogger("paho").setLevel(max(level, logging.INFO))

    logging.getLogger(__name__).info(
        "MQTT gateway logging initialized",
        extra={"otel_log_file": cfg.otel_log_file, "pid": os.getpid(), "log_level": cfg.log_level.upper()},
    )


def shutdown_observability() -> None:
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None
