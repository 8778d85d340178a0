import json
import os
import shutil
import threading
import time
from datetime import datetime, timezone
from typing import Any, Optional

from pgoptimizer.config import settings


class SmartLogger:
    """
    Structured event logger.

    Every entry is a dotted event name (e.g. "partition.create.ok") plus an optional
    params dict. Entries go to the console and, when enabled, to a JSONL file.
    Params larger than ``max_inline_chars`` are written to a separate detail file and
    only their keys are kept inline, so the main log stays greppable.

    Environment variables (all optional):
        PGOPT_LOG_MAIN_LOG_PATH      default "logs/pgoptimizer.jsonl"
        PGOPT_LOG_DETAIL_LOG_DIR     default "logs/details"
        PGOPT_LOG_MIN_LEVEL          default LOG_LEVEL setting ("INFO")
        PGOPT_LOG_INCLUDE_ALL_MIN_LEVEL  default "WARNING"
        PGOPT_LOG_CONSOLE_OUTPUT     default "True"
        PGOPT_LOG_FILE_OUTPUT        default "False"
        PGOPT_LOG_REMOVE_LOG_ON_CREATE  default "False"
    """

    LEVEL_PRIORITY = {
        "DEBUG": 0,
        "INFO": 1,
        "WARNING": 2,
        "ERROR": 3,
        "CRITICAL": 4,
    }
    ENV_PREFIX = "PGOPT_LOG_"
    _instance = None
    _instance_lock = threading.Lock()

    @classmethod
    def instance(cls) -> "SmartLogger":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def log(cls, level, message, category=None, params=None, max_inline_chars=100):
        cls.instance()._log(level, message, category, params, max_inline_chars)

    def __init__(
        self,
        main_log_path: Optional[str] = None,
        detail_log_dir: Optional[str] = None,
        min_level: Optional[str] = None,
        include_all_min_level: Optional[str] = None,
        console_output: Optional[bool] = None,
        file_output: Optional[bool] = None,
        remove_log_on_create: Optional[bool] = None,
    ):
        self.main_log_path = self._setting(main_log_path, "MAIN_LOG_PATH", "logs/pgoptimizer.jsonl")
        self.detail_log_dir = self._setting(detail_log_dir, "DETAIL_LOG_DIR", "logs/details")
        self.min_level = self._setting(min_level, "MIN_LEVEL", settings.log_level or "INFO").upper()
        self.include_all_min_level = self._setting(
            include_all_min_level, "INCLUDE_ALL_MIN_LEVEL", "WARNING"
        ).upper()
        self.console_output = self._flag(console_output, "CONSOLE_OUTPUT", True)
        self.file_output = self._flag(file_output, "FILE_OUTPUT", False)
        remove_on_create = self._flag(remove_log_on_create, "REMOVE_LOG_ON_CREATE", False)

        self._lock = threading.Lock()
        self._last_second = None
        self._second_counter = 0

        if self.file_output:
            dir_paths = [p for p in (os.path.dirname(self.main_log_path), self.detail_log_dir) if p]
            if remove_on_create:
                for dir_path in dir_paths:
                    if os.path.exists(dir_path):
                        shutil.rmtree(dir_path)
            for dir_path in dir_paths:
                os.makedirs(dir_path, exist_ok=True)

    def _setting(self, direct_value: Optional[str], env_key: str, default: str) -> str:
        if direct_value is not None:
            return direct_value
        return os.environ.get(f"{self.ENV_PREFIX}{env_key}", default)

    def _flag(self, direct_value: Optional[bool], env_key: str, default: bool) -> bool:
        if direct_value is not None:
            return bool(direct_value)
        raw = os.environ.get(f"{self.ENV_PREFIX}{env_key}")
        if raw is None:
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}

    def _priority(self, level: str, fallback: int) -> int:
        return self.LEVEL_PRIORITY.get(str(level).upper(), fallback)

    def _should_log(self, level: str) -> bool:
        return self._priority(level, 1) >= self._priority(self.min_level, 0)

    def _should_include_all(self, level: str) -> bool:
        return self._priority(level, 1) >= self._priority(self.include_all_min_level, 2)

    def _next_trace_id(self) -> str:
        """Seconds-based id, suffixed with a counter when several events share a second."""
        current = str(int(time.time()))
        with self._lock:
            if self._last_second == current:
                self._second_counter += 1
            else:
                self._last_second = current
                self._second_counter = 1
            return f"{current}_{self._second_counter}"

    def _write_detail(self, trace_id: str, payload: Any) -> Optional[str]:
        if not self.file_output:
            return None
        filename = f"{trace_id}.json"
        with open(os.path.join(self.detail_log_dir, filename), "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, default=str)
        return filename

    @staticmethod
    def _summarize(params: Any) -> Any:
        if isinstance(params, dict):
            return {"keys": list(params.keys())}
        if isinstance(params, (list, tuple)):
            return {"type": type(params).__name__, "length": len(params)}
        return {"type": type(params).__name__}

    def _log(self, level, message, category=None, params=None, max_inline_chars=100):
        """
        Args:
            level (str): DEBUG, INFO, WARNING, ERROR, CRITICAL
            message (str): dotted event name
            category (str): event group, e.g. "partition.maintenance"
            params (dict): event details
            max_inline_chars (int): params longer than this are spilled to a detail file.
                0 means "always inline".
        """
        if not self._should_log(level):
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": str(level).upper(),
            "message": "" if message is None else str(message),
        }
        if category:
            entry["category"] = category

        if params:
            inline = (
                max_inline_chars <= 0
                or len(str(params)) <= max_inline_chars
                or self._should_include_all(level)
            )
            if inline:
                entry["params"] = params
            else:
                try:
                    detail_ref = self._write_detail(self._next_trace_id(), params)
                except OSError as exc:
                    entry["detail_save_error"] = str(exc)
                else:
                    if detail_ref is None:
                        entry["detail_save_error"] = "file_output_disabled"
                    else:
                        entry["detail_ref"] = detail_ref
                entry["params_summary"] = self._summarize(params)

        if self.file_output:
            line = json.dumps(entry, ensure_ascii=False, default=str)
            with self._lock:
                with open(self.main_log_path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")

        if self.console_output:
            category_str = f"[{category}]" if category else ""
            if "params" in entry:
                print(f"[{entry['level']}]{category_str} {entry['message']} {entry['params']}")
            else:
                print(f"[{entry['level']}]{category_str} {entry['message']}")
