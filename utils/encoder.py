import json

# Sentinel written in place of an absent payload, mirroring how stored sessions encode "no data".
UNDEFINED = "undefined"


def encode(value) -> str:
    if value is None:
        return UNDEFINED
    return json.dumps(value, separators=(",", ":"), default=_default)


def decode(raw):
    if raw is None or raw == UNDEFINED:
        return None
    return json.loads(raw)


def _default(value):
    # datetimes show up in session payloads (cookie expiry); store them as ISO-8601
    isoformat = getattr(value, "isoformat", None)
    if isoformat is None:
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
    return isoformat()
