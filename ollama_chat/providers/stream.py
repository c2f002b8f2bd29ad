"""NDJSON 响应流解码。

Ollama 在 stream=true 时返回换行分隔的 JSON 对象，每行一条 ResponseRecord。
decode_record 是唯一的单行解码路径，流式与非流式调用共用。
"""

import json
import logging
from typing import Iterable, Iterator, Optional, Union

from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from ollama_chat.domain.exceptions import MalformedRecordError
from ollama_chat.domain.models import ResponseRecord
from ollama_chat.infrastructure.logging.logger import log_with

_record_adapter = TypeAdapter(ResponseRecord)

Line = Union[str, bytes]


def decode_record(line: Line) -> ResponseRecord:
    """把一行 JSON 解码并校验为 ResponseRecord。

    Raises:
        MalformedRecordError: 非法 JSON、非对象或字段类型不符。
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedRecordError(code="MALFORMED_RECORD", message=str(e))
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(code="MALFORMED_RECORD", message=f"invalid json: {e}")
    if not isinstance(data, dict):
        raise MalformedRecordError(code="MALFORMED_RECORD", message="record is not a JSON object")
    try:
        record = _record_adapter.validate_python(data)
    except SchemaError as e:
        raise MalformedRecordError(code="MALFORMED_RECORD", message=f"schema mismatch: {e.error_count()} errors")
    record.raw = data
    return record


class StreamDecoder:
    """把一次 HTTP 调用的行流转换为 ResponseRecord 序列。

    - 按到达顺序产出，一次只解码一整行。
    - 解析失败的行记日志后跳过，不中断生成。
    - 读到 done=true 后立即停止，不再读取剩余行。
    - 传输层异常原样向上抛出，由调用方映射为 NetworkError。

    每个实例只对应一次调用，只能迭代一次。
    """

    def __init__(self, lines: Iterable[Line], log_ctx: Optional[dict] = None):
        self._lines = lines
        self._log_ctx = dict(log_ctx or {})
        self._consumed = False
        self.completed = False
        self.skipped = 0
        self.final_record: Optional[ResponseRecord] = None

    def __iter__(self) -> Iterator[ResponseRecord]:
        if self._consumed:
            raise RuntimeError("StreamDecoder can only be iterated once")
        self._consumed = True
        return self._decode()

    def _decode(self) -> Iterator[ResponseRecord]:
        for line in self._lines:
            if not line or not line.strip():
                continue
            try:
                record = decode_record(line)
            except MalformedRecordError as e:
                self.skipped += 1
                log_with(logging.WARNING, "Skipped malformed stream line", self._log_ctx, error=e.message)
                continue
            if record.done:
                self.completed = True
                self.final_record = record
                yield record
                return
            yield record
