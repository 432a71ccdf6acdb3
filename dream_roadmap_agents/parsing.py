"""Extraction of structured data from raw generator text.

Nothing in this module raises on malformed input: every extractor returns a
:class:`ParseFailure` instead, which callers treat as a recoverable signal.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterator

from .errors import ParseFailure
from .models import ReflectionQuestion

_LIST_MARKER = re.compile(r"^[\d.)\-*]+\s*")

_CLOSERS = {"{": "}", "[": "]"}


def _strip_marker(line: str) -> str:
    return _LIST_MARKER.sub("", line.strip()).strip()


def extract_reflection_and_question(
    text: str | None,
) -> ReflectionQuestion | ParseFailure:
    if text is None or not text.strip():
        return ParseFailure("empty response")

    lines = [line for line in text.strip().splitlines() if line.strip()]
    for index in range(len(lines) - 1, -1, -1):
        if "?" in lines[index]:
            question = _strip_marker(lines[index])
            reflection = _strip_marker(" ".join(line.strip() for line in lines[:index]))
            if question:
                return ReflectionQuestion(reflection=reflection, question=question)
            break

    return ReflectionQuestion(reflection="", question=text.strip())


def _balanced_spans(text: str, opener: str) -> Iterator[str]:
    closer = _CLOSERS[opener]
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for pos in range(start, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == opener:
                depth += 1
            elif char == closer:
                depth -= 1
                if depth == 0:
                    end = pos
                    break
        if end == -1:
            return
        yield text[start : end + 1]
        start = text.find(opener, start + 1)


def _first_decodable(text: str | None, opener: str, expected: type) -> Any:
    if text is None or not text.strip():
        return ParseFailure("empty response")

    saw_span = False
    for span in _balanced_spans(text, opener):
        saw_span = True
        try:
            data = json.loads(span)
        except (ValueError, RecursionError):
            continue
        if isinstance(data, expected):
            return data

    if not saw_span:
        return ParseFailure(f"no balanced '{opener}{_CLOSERS[opener]}' span found")
    return ParseFailure(f"no '{opener}{_CLOSERS[opener]}' span could be decoded")


def extract_object(text: str | None) -> dict[str, Any] | ParseFailure:
    return _first_decodable(text, "{", dict)


def extract_array(text: str | None) -> list[Any] | ParseFailure:
    return _first_decodable(text, "[", list)


def extract_items(text: str | None, key: str) -> list[Any] | ParseFailure:
    """Return a top-level array, or the list an object carries under ``key``.

    Whichever bracket opens first in the text wins, so an object wrapping an
    array is not mistaken for its inner list.
    """
    if text is None or not text.strip():
        return ParseFailure("empty response")

    brace = text.find("{")
    bracket = text.find("[")
    object_first = brace != -1 and (bracket == -1 or brace < bracket)

    if object_first:
        data = extract_object(text)
        if isinstance(data, dict):
            if isinstance(data.get(key), list):
                return data[key]
            return ParseFailure(f"object has no '{key}' list")
        return extract_array(text)

    array = extract_array(text)
    if isinstance(array, list):
        return array
    data = extract_object(text)
    if isinstance(data, dict) and isinstance(data.get(key), list):
        return data[key]
    return ParseFailure(f"no array or '{key}' list found")
