"""
ReviewDesk - Request Utilities
Safe parsing helpers for request parameters
"""
from datetime import datetime, timezone


def safe_int(value, default=0, min_val=None, max_val=None):
    """Parse an int from a query or body value, clamped to [min_val, max_val]; None default passes through"""
    try:
        result = int(value) if value is not None else default
    except (ValueError, TypeError):
        result = default

    if result is None:
        return None

    if min_val is not None:
        result = max(result, min_val)
    if max_val is not None:
        result = min(result, max_val)

    return result


def safe_bool(value, default=False):
    """
    Safely parse a boolean from a request parameter.
    Accepts: true, false, 1, 0, yes, no (case insensitive)
    """
    if value is None:
        return default

    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')

    return bool(value)


def parse_timestamp(value):
    """
    Parse a platform timestamp into a naive UTC datetime.

    Accepts epoch seconds (int/float/numeric string) or ISO-8601 strings,
    including the trailing 'Z' and '+0000' offsets platforms send.
    Returns None when the value can't be parsed.
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc).replace(tzinfo=None)
        except (ValueError, OverflowError, OSError):
            return None
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        # Graph API sends +0000 without the colon
        if len(text) > 5 and text[-5] in '+-' and text[-4:].isdigit():
            text = f"{text[:-2]}:{text[-2:]}"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            # Yelp: "2016-08-29 00:41:13"
            try:
                parsed = datetime.strptime(text, '%Y-%m-%d %H:%M:%S')
            except ValueError:
                return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
