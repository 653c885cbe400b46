"""Character encoding detection for uploaded CSV files.

Clients export either UTF-8 or Shift_JIS (Excel on Japanese Windows). The
detector is a best-effort heuristic: a UTF-8 BOM wins outright, otherwise a
sample of the file is checked for well-formed UTF-8 multi-byte sequences and
anything that does not validate is treated as Shift_JIS.
"""

from __future__ import annotations

UTF8 = "UTF-8"
SHIFT_JIS = "Shift_JIS"

UTF8_BOM = b"\xef\xbb\xbf"
DEFAULT_SAMPLE_SIZE = 4096

# Shift_JIS as written by Windows is the cp932 superset (NEC/IBM extensions)
_CODECS = {UTF8: "utf-8-sig", SHIFT_JIS: "cp932"}


def _is_continuation(byte: int) -> bool:
    return byte & 0xC0 == 0x80


def looks_like_utf8(sample: bytes, partial_tail: bool = False) -> bool:
    """Validate the lead/continuation byte structure of a UTF-8 sample.

    A multi-byte sequence cut off by the end of the sample counts as
    malformed unless ``partial_tail`` says the sample was sliced out of a
    longer buffer, in which case the truncated tail is not judged.
    """
    i = 0
    length = len(sample)
    while i < length:
        byte = sample[i]
        if byte < 0x80:
            i += 1
            continue
        if byte & 0xE0 == 0xC0:
            width = 2
        elif byte & 0xF0 == 0xE0:
            width = 3
        elif byte & 0xF8 == 0xF0:
            width = 4
        else:
            # Stray continuation byte or invalid lead byte
            return False
        tail = sample[i + 1 : i + width]
        if not all(_is_continuation(b) for b in tail):
            return False
        if i + width > length:
            return partial_tail
        i += width
    return True


def detect_encoding(data: bytes, sample_size: int = DEFAULT_SAMPLE_SIZE) -> str:
    """Classify ``data`` as UTF-8 or Shift_JIS. Never raises."""
    if data[:3] == UTF8_BOM:
        return UTF8
    sample = data[:sample_size]
    partial_tail = len(data) > sample_size
    return UTF8 if looks_like_utf8(sample, partial_tail) else SHIFT_JIS


def decode_bytes(data: bytes, encoding: str) -> str:
    """Decode with the codec behind an encoding tag, dropping any BOM.

    Undecodable bytes become U+FFFD rather than failing the import.
    """
    codec = _CODECS.get(encoding, encoding)
    text = data.decode(codec, errors="replace")
    if text.startswith("\ufeff"):
        text = text[1:]
    return text
