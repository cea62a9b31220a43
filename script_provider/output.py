"""Decoding of read command output into the observed resource payload."""
from __future__ import annotations

from dataclasses import dataclass
import base64
import binascii

from core.errors import DecodeError

from .config import Config, ReadFormat


@dataclass(frozen=True, slots=True)
class ParsedOutput:
    payload: str
    present: bool


@dataclass(frozen=True, slots=True)
class ReadOutputParser:
    """Filters read output by line prefix and decodes it per the read format."""

    read_format: ReadFormat = ReadFormat.RAW
    line_prefix: str = ""

    @classmethod
    def from_config(cls, config: Config) -> "ReadOutputParser":
        return cls(read_format=config.read_format, line_prefix=config.read_line_prefix)

    def filter_lines(self, text: str) -> str:
        """Keep lines starting with the prefix, with the prefix stripped."""

        if not self.line_prefix:
            return text
        pieces = text.split("\n")
        lines = [piece + "\n" for piece in pieces[:-1]]
        if pieces[-1]:
            lines.append(pieces[-1])
        size = len(self.line_prefix)
        return "".join(line[size:] for line in lines if line.startswith(self.line_prefix))

    def parse(self, stdout: bytes) -> ParsedOutput:
        if self.read_format is ReadFormat.BASE64:
            filtered = self.filter_lines(stdout.decode("ascii", errors="replace"))
            payload = self._decode_base64(filtered)
        else:
            payload = self.filter_lines(stdout.decode("utf-8", errors="replace"))
        return ParsedOutput(payload=payload, present=bool(payload))

    @staticmethod
    def _decode_base64(text: str) -> str:
        compact = "".join(text.split())
        if not compact:
            return ""
        try:
            raw = base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecodeError(f"Read output is not valid base64: {exc}") from exc
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Decoded read output is not valid UTF-8: {exc}") from exc
