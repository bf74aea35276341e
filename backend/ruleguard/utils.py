import re

_DELAY_RE = re.compile(r"(\d+)([mhd]?)")
_MULTIPLIERS = {"m": 60, "h": 3600, "d": 86400}


def convert_delay(delay) -> int:
    """Turn '5m', '1h', '2d' or a bare number of seconds into seconds. Blank means 0."""
    if delay is None or delay == "":
        return 0
    if isinstance(delay, int):
        return delay
    match = _DELAY_RE.search(str(delay))
    if not match:
        return 300
    return int(match.group(1)) * _MULTIPLIERS.get(match.group(2), 1)
