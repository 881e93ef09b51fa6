"""
Upstream request logger

每个 adapter 一个 JSONL 请求日志，记录：
- 触发时间与耗时
- 计量单位（tokens / images / seconds / characters）
- 模型与操作类型
- 成功/失败状态

文件路径: {AI_GATEWAY_LOG_DIR}/{adapter_name}/{YYYY-MM-DD}.jsonl
Off unless AI_GATEWAY_LOGGING is truthy.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 100
TRUTHY = ("true", "1", "yes", "on")


def _preview(text: Optional[str]) -> tuple[int, Optional[str]]:
    if not text:
        return 0, None
    return len(text), text[:PREVIEW_CHARS]


class RequestLogger:
    """Appends one JSON line per upstream request for a single adapter."""

    def __init__(self, adapter_name: str, enabled: Optional[bool] = None):
        """
        Args:
            adapter_name: Adapter 名称，同时是日志子目录名
            enabled: None 时读取 AI_GATEWAY_LOGGING
        """
        self.adapter_name = adapter_name
        if enabled is None:
            enabled = os.getenv("AI_GATEWAY_LOGGING", "false").lower() in TRUTHY
        self.enabled = enabled

        self.log_dir = Path(os.getenv("AI_GATEWAY_LOG_DIR", "logs")) / adapter_name
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

    def _entry(
        self,
        model: str,
        operation: str,
        prompt: Optional[str],
        duration_ms: float,
        success: bool,
        error_message: Optional[str],
    ) -> dict[str, Any]:
        prompt_length, prompt_preview = _preview(prompt)
        return {
            "timestamp": datetime.now().isoformat(),
            "adapter": self.adapter_name,
            "model": model,
            "operation": operation,
            "prompt_length": prompt_length,
            "prompt_preview": prompt_preview,
            "duration_ms": round(duration_ms, 2),
            "success": success,
            "error_message": error_message,
        }

    def _write(self, entry: dict[str, Any]) -> None:
        path = self.log_dir / f"{datetime.now():%Y-%m-%d}.jsonl"
        line = json.dumps(entry, ensure_ascii=False, default=str)
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning("Failed to write request log %s: %s", path, e)

    def log_request(
        self,
        model: str,
        operation: str,
        prompt: Optional[str],
        response_text: Optional[str],
        input_units: Optional[int],
        output_units: Optional[int],
        duration_ms: float,
        success: bool,
        error_message: Optional[str] = None,
        **extra_fields
    ) -> None:
        """
        记录一次非流式请求

        Args:
            operation: chat, generate_image, get_status, text_to_speech, ...
            prompt: 输入文本，日志中只保留前 100 字符
            input_units: 输入 token 数或计量单位数
            output_units: 输出 token 数
            **extra_fields: 附加字段，原样写入
        """
        if not self.enabled:
            return

        entry = self._entry(model, operation, prompt, duration_ms, success, error_message)
        response_length, response_preview = _preview(response_text)
        entry.update(
            response_length=response_length,
            response_preview=response_preview,
            input_units=input_units,
            output_units=output_units,
            **extra_fields,
        )
        self._write(entry)

    def log_stream_request(
        self,
        model: str,
        prompt: Optional[str],
        total_chunks: int,
        total_text_length: int,
        duration_ms: float,
        success: bool,
        error_message: Optional[str] = None,
        **extra_fields
    ) -> None:
        """记录流式请求"""
        if not self.enabled:
            return

        entry = self._entry(model, "stream_chat", prompt, duration_ms, success, error_message)
        entry.update(
            stream=True,
            total_chunks=total_chunks,
            total_text_length=total_text_length,
            **extra_fields,
        )
        self._write(entry)


# 每个 adapter 共享一个实例
_loggers: dict[str, RequestLogger] = {}


def get_logger(adapter_name: str) -> RequestLogger:
    if adapter_name not in _loggers:
        _loggers[adapter_name] = RequestLogger(adapter_name)
    return _loggers[adapter_name]
