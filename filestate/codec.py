"""JSON encoding of stored values."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any
import json


class CodecError(ValueError):
    """Raised when a value cannot be converted to or from its stored form."""


class EncodeError(CodecError):
    pass


class DecodeError(CodecError):
    pass


@dataclass(frozen=True)
class JsonCodec:
    """Encode/decode whole values as UTF-8 JSON documents."""

    indent: int | None = 2

    def encode(self, value: Any) -> bytes:
        try:
            text = json.dumps(
                value,
                indent=self.indent,
                sort_keys=isinstance(value, dict),
                ensure_ascii=False,
            )
        except (TypeError, ValueError) as exc:
            raise EncodeError(f"value is not JSON serialisable: {exc}") from exc
        return text.encode("utf-8")

    def decode(self, raw: bytes) -> Any:
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecodeError(f"malformed stored content: {exc}") from exc
