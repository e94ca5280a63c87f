"""
Size parsing for the sizes remote services report.

Sizes come back as ints, digit strings, "1,234 bytes", "1.5 MB" or
"1.5 MB (1,572,864 bytes)". parse_size() tries a fixed list of patterns
in order and returns a Size with bytes=None instead of guessing 0.
"""
import re
from collections import namedtuple


class Size(namedtuple("Size", ["bytes", "raw"])):
    __slots__ = ()

    @property
    def parsed(self):
        return self.bytes is not None


UNITS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 ** 2,
    "GB": 1024 ** 3,
    "TB": 1024 ** 4,
}

_PAREN_BYTES = re.compile(r"\(\s*([\d,]+)\s*bytes?\s*\)", re.IGNORECASE)
_BARE_BYTES = re.compile(r"^\s*([\d,]+)\s*bytes?\s*$", re.IGNORECASE)
_UNIT_SUFFIX = re.compile(r"^\s*([\d.,]+)\s*([KMGT]?B)\s*$", re.IGNORECASE)
_DIGITS = re.compile(r"^\s*(\d+)\s*$")


def _digits(text):
    return int(text.replace(",", ""))


def _from_count(match):
    return _digits(match.group(1))


def _from_unit(match):
    number = float(match.group(1).replace(",", ""))
    return int(number * UNITS[match.group(2).upper()])


def _from_plain(match):
    return int(match.group(1))


# Order matters: the exact byte count wins over a rounded unit figure
PATTERNS = (
    (_PAREN_BYTES, _from_count, "search"),
    (_BARE_BYTES, _from_count, "match"),
    (_UNIT_SUFFIX, _from_unit, "match"),
    (_DIGITS, _from_plain, "match"),
)


def unparseable(raw):
    return Size(None, raw)


def parse_size(raw):
    """Parse a reported size into Size(bytes, raw); bytes is None if unreadable."""
    if isinstance(raw, bool) or raw is None:
        return unparseable(raw)
    if isinstance(raw, int):
        return Size(raw, raw) if raw >= 0 else unparseable(raw)

    text = str(raw)
    for pattern, convert, how in PATTERNS:
        match = getattr(pattern, how)(text)
        if match:
            try:
                return Size(convert(match), raw)
            except (ValueError, KeyError):
                return unparseable(raw)
    return unparseable(raw)


def human_size(n):
    """Convert bytes to human-readable format."""
    if n is None:
        return "unknown"
    n = float(n)
    for u in ("B", "KB", "MB", "GB"):
        if n < 1024:
            return f"{n:.1f}{u}"
        n /= 1024
    return f"{n:.1f}TB"
