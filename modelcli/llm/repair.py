"""
Recovery of near-JSON tool-call arguments.

Models that stream arguments token by token regularly leave raw quotes,
newlines and control characters inside what is structurally a JSON string.
``repair_json`` re-scans the text once and escapes those characters so that
``json.loads`` has a chance to succeed.  Whether a quote closes a string is
decided by looking at what follows it: a closing quote must be followed by
something that is legal at that point of the document.  The rule is a
heuristic; deeply nested or unusual documents can still fool it.

``parse_tool_arguments`` is the entry point used by the conversation loop:
direct parse first, one repair attempt second.
"""

from __future__ import annotations

import base64
import json
import logging

from modelcli.errors import ArgumentParseError

logger = logging.getLogger(__name__)

_VALID_ESCAPES = frozenset('"\\/bfnrtu')
_WHITESPACE = " \t\n\r"
# Characters that may start a value after a comma inside an array.
_ARRAY_VALUE_STARTS = frozenset('"{[}]-tfn0123456789')

_SNIPPET_LIMIT = 400
_BASE64_LIMIT = 20000


class _Container:
    __slots__ = ("kind", "expecting_key")

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.expecting_key = kind == "object"


def repair_json(text: str) -> str:
    """Escape stray quotes and control characters inside JSON strings.

    Never raises.  Valid JSON without characters needing escaping comes back
    unchanged.  Open strings are closed at end of input; open containers are
    left as they are.
    """
    if not text:
        return text

    out: list[str] = []
    stack: list[_Container] = []
    in_string = False
    is_key = False
    escaping = False

    for i, char in enumerate(text):
        if in_string:
            if escaping:
                if char in _VALID_ESCAPES:
                    out.append("\\" + char)
                elif char == "\n":
                    out.append("\\\\n")
                elif char == "\r":
                    out.append("\\\\r")
                else:
                    out.append("\\\\" + char)
                escaping = False
                continue
            if char == "\\":
                escaping = True
                continue
            if char == '"':
                kind = stack[-1].kind if stack else None
                if is_key or _looks_like_terminator(text, i, kind):
                    in_string = False
                    is_key = False
                    _set_expecting_key(stack, False)
                    out.append(char)
                else:
                    out.append('\\"')
                continue
            if char == "\n":
                out.append("\\n")
            elif char == "\r":
                out.append("\\r")
            elif ord(char) < 0x20:
                out.append(f"\\u{ord(char):04x}")
            else:
                out.append(char)
            continue

        if char == '"':
            in_string = True
            escaping = False
            is_key = bool(stack) and stack[-1].expecting_key
        elif char == "{":
            stack.append(_Container("object"))
        elif char == "[":
            stack.append(_Container("array"))
        elif char in "}]":
            if stack:
                stack.pop()
        elif char == ":":
            _set_expecting_key(stack, False)
        elif char == ",":
            _set_expecting_key(stack, True)
        out.append(char)

    if escaping:
        out.append("\\\\")
    if in_string:
        out.append('"')
    return "".join(out)


def _set_expecting_key(stack: list[_Container], expecting: bool) -> None:
    if stack and stack[-1].kind == "object":
        stack[-1].expecting_key = expecting


def _next_significant(text: str, start: int) -> str | None:
    pos = start
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    if pos >= len(text):
        return None
    return text[pos]


def _looks_like_terminator(text: str, index: int, kind: str | None) -> bool:
    """Return True if the quote at *index* can close a string value."""
    pos = index + 1
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    if pos >= len(text):
        return True

    nxt = text[pos]
    if nxt in "}]":
        following = _next_significant(text, pos + 1)
        return following is None or following in ",}]"
    if nxt == ",":
        token = _next_significant(text, pos + 1)
        if token is None:
            return True
        if kind == "object":
            return token in '"}'
        return token in _ARRAY_VALUE_STARTS
    return False


# ----------------------------------------------------------------------
# Argument parsing
# ----------------------------------------------------------------------


def parse_tool_arguments(tool_name: str, raw: str | None) -> dict:
    """
    Parse the raw *arguments* text of a tool call.

    Blank input means "no arguments".  On a parse failure the text is run
    through :func:`repair_json` once and parsed again.

    Raises
    ------
    ArgumentParseError
        If neither the raw nor the repaired text yields a JSON object.
    """
    if raw is None or not raw.strip():
        return {}

    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        _log_parse_failure("raw", tool_name, raw, exc)
        repaired = repair_json(raw)
        if repaired == raw:
            raise ArgumentParseError(tool_name, raw, str(exc)) from exc
        try:
            value = json.loads(repaired)
        except json.JSONDecodeError as exc2:
            _log_parse_failure("repaired", tool_name, repaired, exc2)
            raise ArgumentParseError(tool_name, raw, str(exc2)) from exc2

    if not isinstance(value, dict):
        raise ArgumentParseError(
            tool_name, raw, f"expected a JSON object, got {type(value).__name__}"
        )
    return value


def _log_parse_failure(stage: str, tool_name: str, raw: str, exc: Exception) -> None:
    snippet = raw
    if len(snippet) > _SNIPPET_LIMIT:
        snippet = snippet[: _SNIPPET_LIMIT - 3] + "..."
    snippet = snippet.replace("\r\n", "\\n").replace("\n", "\\n")
    preview = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    if len(preview) > _BASE64_LIMIT:
        preview = preview[:_BASE64_LIMIT] + "..."
    logger.warning(
        "[tool-args:%s] Failed to parse arguments for %s: %s. Snippet=%r Base64Preview=%s",
        stage,
        tool_name,
        exc,
        snippet,
        preview,
    )
