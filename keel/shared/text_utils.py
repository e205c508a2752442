"""Text helpers for subprocess output.

Shared by the process runner and the shell tool:
- strip_ansi: remove terminal escape sequences from decoded output
- is_binary: NUL-byte sniffing on raw bytes
- resolve_output_encoding: encoding used to decode child output
"""

from __future__ import annotations

import locale
import re
import sys

# CSI / OSC sequences plus single-character escapes (ESC or 8-bit CSI).
_ANSI_RE = re.compile(
    r"[\u001B\u009B][\[\]()#;?]*"
    r"(?:"
    r"(?:(?:(?:;[-a-zA-Z\d/#&.:=?%@~_]+)*"
    r"|[a-zA-Z\d]+(?:;[-a-zA-Z\d/#&.:=?%@~_]*)*)?\u0007)"
    r"|(?:(?:\d{1,4}(?:;\d{0,4})*)?[\dA-PR-TZcf-nq-uy=><~])"
    r")"
)

BINARY_SAMPLE_SIZE = 512


def strip_ansi(text: str) -> str:
    """Return *text* without ANSI escape sequences."""
    if not text:
        return text
    return _ANSI_RE.sub("", text)


def is_binary(data: bytes | None, sample_size: int = BINARY_SAMPLE_SIZE) -> bool:
    """True when the first *sample_size* bytes contain a NUL byte."""
    if not data:
        return False
    return b"\x00" in data[:sample_size]


def resolve_output_encoding() -> str:
    """Encoding for decoding child process output.

    POSIX shells are assumed to speak UTF-8. On Windows the console
    code page (via the locale) is used, since cmd.exe does not emit
    UTF-8 by default.
    """
    if sys.platform == "win32":
        return locale.getpreferredencoding(False) or "utf-8"
    return "utf-8"
