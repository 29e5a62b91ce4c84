"""Search-and-replace semantics for ``edit`` steps.

Patterns follow the ``/body/flags`` convention emitted by the planner, which
uses JavaScript regular-expression vocabulary. Flags and replacement tokens
are mapped onto :mod:`re` here. Without the ``m`` flag a bare ``$`` anchors at
the very end of the text, as in JavaScript, rather than before a final newline.
"""

from __future__ import annotations

import re
from typing import Callable

from .schema import FindSpec, LiteralFind, PatternFind

__all__ = ["apply_find_replace", "compile_pattern"]

_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
    "y": 0,
}
_NAMED_GROUP_RE = re.compile(r"\(\?<(?![=!])([A-Za-z_][A-Za-z0-9_]*)>")
_BACKREF_NAME_RE = re.compile(r"\\k<([A-Za-z_][A-Za-z0-9_]*)>")
_REPLACEMENT_TOKEN_RE = re.compile(r"\$(?:(\$)|(&)|(`)|(')|(\d{1,2})|<([^>]*)>)")


def compile_pattern(find: PatternFind) -> tuple[re.Pattern[str], bool]:
    """Compile ``find`` and report whether every match should be replaced."""
    flags = 0
    replace_all = False
    for letter in find.flags:
        if letter == "g":
            replace_all = True
            continue
        if letter not in _FLAG_MAP:
            raise ValueError(f"edit: unsupported regex flag '{letter}' in {find.render()}")
        flags |= _FLAG_MAP[letter]
    body = _NAMED_GROUP_RE.sub(r"(?P<\1>", find.body)
    body = _BACKREF_NAME_RE.sub(r"(?P=\1)", body)
    if not flags & re.MULTILINE:
        body = _anchor_dollar_at_end(body)
    try:
        return re.compile(body, flags), replace_all
    except re.error as error:
        raise ValueError(f"edit: invalid regex {find.render()}: {error}") from error


def _anchor_dollar_at_end(body: str) -> str:
    """Rewrite unescaped ``$`` outside character classes to ``\\Z``."""
    out: list[str] = []
    index = 0
    in_class = False
    while index < len(body):
        char = body[index]
        if char == "\\":
            out.append(body[index : index + 2])
            index += 2
            continue
        if in_class:
            if char == "]":
                in_class = False
        elif char == "[":
            in_class = True
        elif char == "$":
            char = r"\Z"
        out.append(char)
        index += 1
    return "".join(out)


def _replacement(template: str) -> Callable[[re.Match[str]], str]:
    def expand(match: re.Match[str]) -> str:
        groups = match.re.groups

        def substitute(token: re.Match[str]) -> str:
            dollar, whole, before, after, number, name = token.groups()
            if dollar:
                return "$"
            if whole:
                return match.group(0)
            if before:
                return match.string[: match.start()]
            if after:
                return match.string[match.end() :]
            if number is not None:
                index = int(number)
                if 1 <= index <= groups:
                    return match.group(index) or ""
                if len(number) == 2 and 1 <= int(number[0]) <= groups:
                    return (match.group(int(number[0])) or "") + number[1]
                return token.group(0)
            if name is not None and match.re.groupindex:
                if name not in match.re.groupindex:
                    return ""
                return match.group(name) or ""
            return token.group(0)

        return _REPLACEMENT_TOKEN_RE.sub(substitute, template)

    return expand


def apply_find_replace(text: str, find: FindSpec, replace: str) -> str:
    """Return ``text`` with ``find`` substituted by ``replace``.

    Literal terms replace every non-overlapping occurrence. Patterns replace
    the first match, or all matches when the ``g`` flag is present.
    """
    if isinstance(find, LiteralFind):
        if not find.text:
            raise ValueError("edit: find must not be empty")
        return text.replace(find.text, replace)
    pattern, replace_all = compile_pattern(find)
    return pattern.sub(_replacement(replace), text, count=0 if replace_all else 1)
