"""Tokenizer and tree builder for the ``{% tag %}`` prompt language."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from vatic.errors import RenderError

OPEN = "{%"
CLOSE = "%}"


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Tag:
    """``{% name key=value ... | pipe %}``"""

    name: str
    params: dict[str, str] = field(default_factory=dict)
    pipes: tuple[str, ...] = ()


@dataclass(frozen=True)
class Range:
    start: int
    end: int  # inclusive


@dataclass(frozen=True)
class ForBlock:
    """``{% for var in (a..b) %}`` or ``{% for var in memories limit:n %}``"""

    var: str
    iterable: Union[Range, str]
    params: dict[str, str] = field(default_factory=dict)
    body: tuple["Node", ...] = ()


Node = Union[Text, Tag, ForBlock]


def parse(template: str) -> list[Node]:
    """Parse a template into a tree of text, tags and loop blocks."""
    root: list[Node] = []
    # each frame: (open loop header or None for the root, collected children)
    stack: list[tuple[ForBlock | None, list[Node]]] = [(None, root)]
    rest = template

    while rest:
        start = rest.find(OPEN)
        if start < 0:
            stack[-1][1].append(Text(rest))
            break
        if start > 0:
            stack[-1][1].append(Text(rest[:start]))

        after = rest[start + len(OPEN):]
        end = after.find(CLOSE)
        if end < 0:
            raise RenderError("unclosed tag: missing '%}'")
        body = after[:end].strip()
        rest = after[end + len(CLOSE):]

        if body == "endfor":
            header, children = stack.pop()
            if header is None:
                raise RenderError("unexpected endfor outside a for loop")
            block = ForBlock(header.var, header.iterable, header.params, tuple(children))
            stack[-1][1].append(block)
        elif body.startswith("for "):
            stack.append((_parse_for(body[4:].strip()), []))
        else:
            stack[-1][1].append(_parse_tag(body))

    if len(stack) > 1:
        raise RenderError(f"for loop over '{stack[-1][0].var}' without matching endfor")
    return root


def references(template: str, name: str) -> bool:
    """Whether ``template`` contains a ``{% name %}`` tag at any depth."""

    def walk(nodes) -> bool:
        for node in nodes:
            if isinstance(node, Tag) and node.name == name:
                return True
            if isinstance(node, ForBlock) and walk(node.body):
                return True
        return False

    return walk(parse(template))


def _parse_tag(body: str) -> Tag:
    segments = _split_outside_quotes(body, "|")
    parts = _split_words(segments[0])
    if not parts:
        raise RenderError("empty tag")
    pipes = tuple(p.strip() for p in segments[1:] if p.strip())
    return Tag(name=parts[0], params=_parse_params(parts[1:]), pipes=pipes)


def _parse_for(body: str) -> ForBlock:
    parts = body.split(None, 2)
    if len(parts) < 3 or parts[1] != "in":
        raise RenderError(f"invalid for loop syntax: 'for {body}'")
    var, source = parts[0], parts[2].strip()

    if source.startswith("("):
        close = source.find(")")
        if close < 0:
            raise RenderError("unclosed range parenthesis")
        bounds = source[1:close].split("..")
        if len(bounds) != 2:
            raise RenderError(f"invalid range syntax: '{source[1:close]}'")
        try:
            start, end = int(bounds[0].strip()), int(bounds[1].strip())
        except ValueError:
            raise RenderError(f"invalid range bounds: '{source[1:close]}'") from None
        return ForBlock(var, Range(start, end))

    words = _split_words(source)
    return ForBlock(var, words[0], _parse_params(words[1:]))


def _parse_params(parts: list[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    for part in parts:
        # `=` takes precedence over `:`
        sep = part.find("=")
        if sep < 0:
            sep = part.find(":")
        if sep < 0:
            raise RenderError(f"invalid parameter (missing '=' or ':'): '{part}'")
        key = part[:sep]
        if not key:
            raise RenderError(f"empty parameter key in '{part}'")
        params[key] = part[sep + 1:]
    return params


def _split_words(text: str) -> list[str]:
    words: list[str] = []
    current = []
    quoted = False
    for ch in text:
        if ch == '"':
            quoted = not quoted
            current.append(ch)
        elif ch in " \t\n" and not quoted:
            if current:
                words.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        words.append("".join(current))
    return words


def _split_outside_quotes(text: str, sep: str) -> list[str]:
    pieces: list[str] = []
    current = []
    quoted = False
    for ch in text:
        if ch == '"':
            quoted = not quoted
        if ch == sep and not quoted:
            pieces.append("".join(current))
            current = []
        else:
            current.append(ch)
    pieces.append("".join(current))
    return pieces
