import math
import re

_NON_NUMERIC_RE = re.compile(r"[^0-9.\-]")


def safe_str(val):
    if val is None:
        return None
    text = str(val).strip()
    if not text or text.lower() == "null":
        return None
    return text


def parse_amount(val):
    """
    Parse a DTS amount ("1,234", "$-56.7", "(null)") to float.

    Only a leading minus sign counts; anything that does not parse is None,
    never 0.
    """
    text = safe_str(val)
    if text is None:
        return None
    cleaned = _NON_NUMERIC_RE.sub("", text)
    negative = cleaned.startswith("-")
    digits = cleaned.replace("-", "")
    if not digits:
        return None
    try:
        num = float(digits)
    except ValueError:
        return None
    if not math.isfinite(num):
        return None
    return -num if negative else num


def round_millions(val):
    # half up, so 2.5 -> 3 and -2.5 -> -2
    if val is None or not math.isfinite(val):
        return None
    return int(math.floor(val + 0.5))


def as_delta_operand(val) -> int:
    return int(val) if val is not None else 0
