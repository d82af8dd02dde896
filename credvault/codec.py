"""Codec for Git's credential key=value stream.

Git and its helpers exchange credentials as ``key=value`` lines terminated
by a blank line (see ``git help credential``, "INPUT/OUTPUT FORMAT")::

    protocol=https
    host=github.com
    username=PersonalAccessToken
    password=ghp_abc123
    <blank line>

Keys this helper does not understand (``capability[]``, ``wwwauth[]``,
``authtype``, ...) are skipped.  Diagnostics report line numbers and key
names only, never values, because a value may be a token.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TextIO

from pydantic import ValidationError

from credvault.errors import MalformedInputError
from credvault.models import CredentialRecord
from credvault.utils import log_debug

RECOGNIZED_KEYS: frozenset[str] = frozenset(
    {"protocol", "host", "path", "username", "password", "url", "password_expiry_utc"}
)

# Emission order for responses; ``url`` is never echoed back because it
# has already been decomposed into the individual fields.
OUTPUT_KEYS: tuple[str, ...] = (
    "protocol",
    "host",
    "path",
    "username",
    "password",
    "password_expiry_utc",
)

OPERATIONS: tuple[str, ...] = ("get", "store", "erase")


def parse_lines(lines: Iterable[str]) -> dict[str, str]:
    """Parse raw lines up to the terminating blank line into a field dict.

    Consumption stops at the blank line, so trailing input is never read.

    Raises:
        MalformedInputError: If a line lacks ``=``, contains NUL, or the
            stream ends before the blank line.
    """
    fields: dict[str, str] = {}
    terminated = False
    for lineno, raw in enumerate(lines, start=1):
        line = raw.rstrip("\n")
        if line.endswith("\r"):
            line = line[:-1]
        if line == "":
            terminated = True
            break
        if "=" not in line:
            raise MalformedInputError(f"line {lineno}: expected key=value")
        key, value = line.split("=", 1)
        if not key:
            raise MalformedInputError(f"line {lineno}: empty key")
        if "\0" in line:
            raise MalformedInputError(f"line {lineno}: NUL byte in '{key}'")
        if key not in RECOGNIZED_KEYS:
            log_debug(f"Ignoring unrecognized key '{key}'")
            continue
        fields[key] = value

    if not terminated:
        raise MalformedInputError("input ended before the terminating blank line")
    return fields


def build_record(fields: dict[str, str], operation: str) -> CredentialRecord:
    """Validate *fields* into a record and enforce the keys *operation* needs.

    ``protocol`` and ``host`` are required for every operation (after any
    ``url`` is decomposed); ``store`` additionally requires a password.
    """
    data: dict[str, object] = dict(fields)

    expiry = fields.get("password_expiry_utc")
    if expiry is not None:
        try:
            data["password_expiry_utc"] = int(expiry)
        except ValueError:
            # Git itself treats an unparseable expiry as "never expires".
            log_debug("Ignoring unparseable password_expiry_utc")
            data.pop("password_expiry_utc")

    try:
        record = CredentialRecord.model_validate(data)
    except ValidationError as exc:
        names = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise MalformedInputError(
            f"invalid value for {', '.join(names) or 'record'}"
        ) from None

    missing = [name for name in ("protocol", "host") if not getattr(record, name)]
    if operation == "store" and not record.secret:
        missing.append("password")
    if missing:
        raise MalformedInputError(
            f"'{operation}' request is missing required key(s): {', '.join(missing)}"
        )
    return record


def parse_record(text: str, operation: str) -> CredentialRecord:
    """Parse a complete request held in a string."""
    return build_record(parse_lines(text.splitlines(keepends=True)), operation)


def read_record(stream: TextIO, operation: str) -> CredentialRecord:
    """Read one request from *stream*, stopping at the blank line."""
    return build_record(parse_lines(stream), operation)


def format_record(record: CredentialRecord | None) -> str:
    """Serialize *record* in stable key order, omitting absent fields.

    Returns an empty string for ``None`` ("no credential known"); otherwise
    the lines are followed by a single blank line.
    """
    if record is None:
        return ""
    lines: list[str] = []
    for key in OUTPUT_KEYS:
        if key == "password":
            value = record.secret
        else:
            value = getattr(record, key)
        if value is None:
            continue
        lines.append(f"{key}={value}\n")
    if not lines:
        return ""
    return "".join(lines) + "\n"
