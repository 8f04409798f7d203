"""String sanitising helpers."""

_REPLACEMENT_CHAR = "\ufffd"


def asciify(s: str) -> str:
    """Replace every byte of the UTF-8 encoding outside printable ASCII with '_'."""
    return "".join(chr(b) if 32 <= b < 127 else "_" for b in s.encode("utf-8", "surrogateescape"))


def printable(s: str) -> str:
    """Replace non-printable characters with the Unicode replacement character."""
    return "".join(ch if ch.isprintable() else _REPLACEMENT_CHAR for ch in s)