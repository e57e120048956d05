"""
logging_utils.py - "srp" 名前空間のログ出力

serverless の `cli.log(msg, "ruby-package")` に相当する出力を一元管理する。
各モジュールは get_structured_logger() でロガーを取得し、
追加情報はキーワード引数で渡す:

    _logger.info("Packaging gems", gem_count=3)

before_package() は RunContext で囲まれるため、その間の全レコードに
run_id (関数名など) が付く。
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional


LOGGER_NAMESPACE = "srp"
LOG_FORMAT_ENV_VAR = "SRP_LOG_FORMAT"


# ============================================================
# RunContext
# ============================================================

_local = threading.local()


def _run_ids() -> List[str]:
    if not hasattr(_local, "run_ids"):
        _local.run_ids = []
    return _local.run_ids


class RunContext:
    """
    パッケージング実行単位の run_id をスレッドごとに保持する。

    ネストした場合は内側の run_id が優先され、抜けると外側に戻る。
    run_id を省略すると12桁の16進数を生成する。
    """

    def __init__(self, run_id: Optional[str] = None) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]

    def __enter__(self) -> "RunContext":
        _run_ids().append(self.run_id)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        ids = _run_ids()
        if ids:
            ids.pop()


def get_run_id() -> Optional[str]:
    ids = _run_ids()
    return ids[-1] if ids else None


def clear_run_id() -> None:
    _run_ids().clear()


# ============================================================
# StructuredFormatter
# ============================================================

class StructuredFormatter(logging.Formatter):
    """
    json (デフォルト) または text 形式で1レコード1行に整形する。

    json:  {"timestamp": ..., "level": "INFO", "module": "srp.packager",
            "message": ..., "run_id": ..., <追加情報>}
    text:  <timestamp> [INFO] srp.packager - message (run_id=...) [k=v ...]
    """

    def __init__(self, fmt_type: Optional[str] = None) -> None:
        super().__init__()
        if fmt_type is None:
            fmt_type = os.environ.get(LOG_FORMAT_ENV_VAR, "json")
        self.fmt_type = fmt_type.lower()

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        timestamp_str = timestamp.isoformat().replace("+00:00", "Z")
        run_id = get_run_id()
        extra: Dict[str, Any] = getattr(record, "context_data", None) or {}

        if self.fmt_type == "text":
            line = f"{timestamp_str} [{record.levelname}] {record.name} - {message}"
            if run_id:
                line += f" (run_id={run_id})"
            if extra:
                line += " [" + " ".join(f"{k}={v}" for k, v in extra.items()) + "]"
            if record.exc_info:
                line += "\n" + self.formatException(record.exc_info)
            return line

        entry: Dict[str, Any] = {
            "timestamp": timestamp_str,
            "level": record.levelname,
            "module": record.name,
            "message": message,
            "run_id": run_id,
        }
        for key, value in extra.items():
            entry.setdefault(key, value)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


# ============================================================
# StructuredLogger
# ============================================================

class StructuredLogger:
    """キーワード引数を context_data として渡す logging.Logger のラッパー"""

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, **context: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, msg, extra={"context_data": context})

    def debug(self, msg: str, **context: Any) -> None:
        self._log(logging.DEBUG, msg, **context)

    def info(self, msg: str, **context: Any) -> None:
        self._log(logging.INFO, msg, **context)

    def warning(self, msg: str, **context: Any) -> None:
        self._log(logging.WARNING, msg, **context)


@lru_cache(maxsize=None)
def get_structured_logger(name: str) -> StructuredLogger:
    """同じ name には同じインスタンスを返す"""
    return StructuredLogger(name)


# ============================================================
# configure_logging
# ============================================================

_configure_lock = threading.Lock()


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def configure_logging(level: str = "INFO", fmt: str = "text", output: str = "stderr") -> None:
    """
    "srp" 名前空間にハンドラを1つだけ設定する。

    Args:
        level: DEBUG / INFO / WARNING / ERROR
        fmt: "json" or "text"
        output: "stderr" またはログファイルのパス

    Raises:
        ValueError: level が不正な場合
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    if output == "stderr":
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.FileHandler(output, encoding="utf-8")
    handler.setFormatter(StructuredFormatter(fmt_type=fmt))

    with _configure_lock:
        srp_logger = logging.getLogger(LOGGER_NAMESPACE)
        _drop_handlers(srp_logger)
        srp_logger.addHandler(handler)
        srp_logger.setLevel(numeric_level)
        srp_logger.propagate = False


def reset_configuration() -> None:
    """configure_logging() 前の状態に戻す (テスト用)"""
    with _configure_lock:
        srp_logger = logging.getLogger(LOGGER_NAMESPACE)
        _drop_handlers(srp_logger)
        srp_logger.setLevel(logging.NOTSET)
        srp_logger.propagate = True
