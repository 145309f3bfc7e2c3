"""Credential scrubbing for log lines.

Bundle payloads are scrubbed by ``failcapture.capture.redaction``; this module
keeps browser credentials that leak into run metadata, step URLs or error
strings out of the JSONL log. Typical leaks are auth headers copied from a
request, session cookies, and tokens carried in URL query strings.
"""

from __future__ import annotations

import re
from typing import Any


MASK = "[REDACTED]"

# Query/fragment parameters whose values are credentials (OAuth callbacks,
# magic links, presigned URLs).
_SECRET_PARAMS = (
    "access_token",
    "id_token",
    "refresh_token",
    "token",
    "code",
    "api_key",
    "apikey",
    "key",
    "password",
    "session",
    "sessionid",
    "sid",
    "signature",
    "x-amz-signature",
    "x-amz-credential",
    "x-amz-security-token",
)

_URL_PARAM = re.compile(
    r"(?P<prefix>[?&#;](?:" + "|".join(re.escape(p) for p in _SECRET_PARAMS) + r")=)(?P<value>[^&#\s\"']+)",
    re.IGNORECASE,
)
_URL_USERINFO = re.compile(r"(?P<scheme>\b[a-z][a-z0-9+.\-]*://)[^/@\s:]+:[^/@\s]+@", re.IGNORECASE)
_AUTH_SCHEME = re.compile(r"\b(?P<scheme>[Bb]earer|[Bb]asic|Digest|Token)\s+[A-Za-z0-9\-\._~\+\/]+=*")
_JWT = re.compile(r"\beyJ[A-Za-z0-9_\-]{8,}\.[A-Za-z0-9_\-]{8,}\.[A-Za-z0-9_\-]{8,}\b")
_COOKIE_HEADER = re.compile(r"(?P<name>\b(?:set-)?cookie\s*:\s*)[^\r\n]+", re.IGNORECASE)

_SENSITIVE_KEYS = {
    # Explicit list; run metadata legitimately carries keys like "token_count".
    "authorization",
    "proxy-authorization",
    "cookie",
    "cookies",
    "set-cookie",
    "x-api-key",
    "x-csrf-token",
    "csrf_token",
    "api_key",
    "access_token",
    "refresh_token",
    "id_token",
    "client_secret",
    "session_id",
    "password",
    "storage_state",
}
_NORMALIZED_KEYS = frozenset(k.replace("_", "-") for k in _SENSITIVE_KEYS)


def redact_text(value: str) -> str:
    text = str(value or "")
    text = _URL_USERINFO.sub(lambda m: f"{m.group('scheme')}{MASK}@", text)
    text = _URL_PARAM.sub(lambda m: f"{m.group('prefix')}{MASK}", text)
    text = _COOKIE_HEADER.sub(lambda m: f"{m.group('name')}{MASK}", text)
    text = _AUTH_SCHEME.sub(lambda m: f"{m.group('scheme')} {MASK}", text)
    return _JWT.sub(MASK, text)


def redact_obj(obj: Any) -> Any:
    if obj is None or isinstance(obj, (int, float, bool)):
        return obj
    if isinstance(obj, str):
        return redact_text(obj)
    if isinstance(obj, (list, tuple)):
        return [redact_obj(v) for v in obj]
    if isinstance(obj, dict):
        return {k: MASK if _is_sensitive_key(k) else redact_obj(v) for k, v in obj.items()}
    return redact_text(str(obj))


def _is_sensitive_key(key: Any) -> bool:
    return str(key).strip().casefold().replace("_", "-") in _NORMALIZED_KEYS
