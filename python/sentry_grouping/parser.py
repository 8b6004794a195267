"""
Compiles rule text into structured rules.

Both rule languages are line oriented. Blank lines and lines starting with
``#`` are skipped, everything else must be a complete rule::

    # enhancements
    family:native function:std::*                   -app
    [ function:dispatch ] | module:myapp.handlers   ^-group max-frames=5
    [function:dispatch]|module:myapp.handlers       ^-group max-frames=5

    # fingerprinting
    type:DatabaseUnavailable                        -> system-down
    message:"*timed out*" !app:no                   -> timeout, {{ function }}

A single malformed line fails the whole text with a :class:`ParseError`
carrying the 1-based line number.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

from .actions import FLAGS, RANGES, VARIABLES, Action, FlagAction, VarAction
from .errors import ParseError, UnknownFlag, UnknownMatcher
from .matchers import (
    ENHANCEMENT_MATCHERS,
    FINGERPRINTING_MATCHERS,
    MATCHER_ALIASES,
    Matcher,
    create_matcher,
)
from .rules import EnhancementRule, FingerprintingRule

logger = logging.getLogger(__name__)

T = TypeVar("T")

FINGERPRINT_ATTRIBUTES = ("title",)

_flag_action_re = re.compile(r"^([\^v]?)([+-])([a-zA-Z_][\w-]*)$")
_var_action_re = re.compile(r"^([a-zA-Z_][\w-]*)=(.*)$", re.S)
_matcher_re = re.compile(r"^(!?)([a-zA-Z_][\w.]*):(.*)$", re.S)
_attribute_re = re.compile(r'\s([a-zA-Z_]+)=("(?:[^"\\]|\\.)*")\s*$')


@dataclass(frozen=True)
class Token:
    text: str
    raw: str

    @property
    def is_action(self) -> bool:
        return bool(_flag_action_re.match(self.text) or _var_action_re.match(self.text))


def _unquote(raw: str, lineno: int) -> str:
    raw = raw.strip()
    if not raw.startswith('"'):
        return raw
    if len(raw) < 2 or not raw.endswith('"'):
        raise ParseError(lineno, "unterminated quoted string", raw)
    return re.sub(r"\\(.)", r"\1", raw[1:-1])


def _scan(text: str, lineno: int) -> Iterator[tuple[int, str]]:
    """Yields ``(position, char)`` for every character outside of quotes."""
    in_quotes = False
    i = 0
    while i < len(text):
        c = text[i]
        if in_quotes:
            if c == "\\":
                i += 1
            elif c == '"':
                in_quotes = False
        elif c == '"':
            in_quotes = True
        else:
            yield i, c
        i += 1
    if in_quotes:
        raise ParseError(lineno, "unterminated quoted string", text)


def _strip_comment(text: str, lineno: int) -> str:
    for i, c in _scan(text, lineno):
        if c == "#" and (i == 0 or text[i - 1].isspace()):
            return text[:i].rstrip()
    return text


def _split(text: str, sep: str, lineno: int) -> list[str]:
    rv = []
    start = 0
    for i, c in _scan(text, lineno):
        if text.startswith(sep, i) and i >= start:
            rv.append(text[start:i])
            start = i + len(sep)
    rv.append(text[start:])
    return rv


def tokenize(line: str, lineno: int) -> list[Token]:
    """
    Splits a rule line on whitespace.

    Double quoted sections may contain whitespace and backslash escapes; the
    quotes are removed from :attr:`Token.text`.
    """
    line = _strip_comment(line, lineno)
    tokens = []
    i = 0
    n = len(line)
    while i < n:
        if line[i].isspace():
            i += 1
            continue
        start = i
        buf = []
        while i < n and not line[i].isspace():
            if line[i] != '"':
                buf.append(line[i])
                i += 1
                continue
            i += 1
            while i < n and line[i] != '"':
                if line[i] == "\\" and i + 1 < n:
                    i += 1
                buf.append(line[i])
                i += 1
            if i >= n:
                raise ParseError(lineno, "unterminated quoted string", line[start:])
            i += 1
        tokens.append(Token("".join(buf), line[start:i]))
    return tokens


def _separate_frame_context(line: str, lineno: int) -> str:
    """
    Puts whitespace around the ``[``, ``]`` and ``|`` that delimit caller and
    callee matchers, so ``[function:a]|function:b`` tokenizes like
    ``[ function:a ] | function:b``.

    A ``[`` only opens a block at the start of a token, and the block is
    closed by the first ``]`` that balances it, so glob character classes in
    patterns are left alone. A ``|`` is a separator when it stands alone or
    touches a block.
    """
    unquoted = dict(_scan(line, lineno))
    separators = set()
    depth = None
    for i, c in unquoted.items():
        if c == "[":
            if depth is not None:
                depth += 1
            elif i == 0 or line[i - 1].isspace() or line[i - 1] == "|":
                separators.add(i)
                depth = 0
        elif c == "]" and depth is not None:
            if depth:
                depth -= 1
            else:
                separators.add(i)
                depth = None

    def neighbour(i: int, step: int) -> int | None:
        i += step
        while 0 <= i < len(line) and line[i].isspace():
            i += step
        return i if 0 <= i < len(line) else None

    for i, c in unquoted.items():
        if c != "|":
            continue
        alone = (i == 0 or line[i - 1].isspace()) and (i + 1 == len(line) or line[i + 1].isspace())
        if alone or neighbour(i, -1) in separators or neighbour(i, 1) in separators:
            separators.add(i)

    if not separators:
        return line
    return "".join(f" {c} " if i in separators else c for i, c in enumerate(line))


def _parse_matcher(token: Token, lineno: int, allowed: frozenset) -> Matcher:
    match = _matcher_re.match(token.text)
    if match is None:
        raise ParseError(lineno, "failed to parse matchers: expected kind:pattern", token.raw)
    negated, kind, pattern = match.groups()
    kind = MATCHER_ALIASES.get(kind, kind)
    if kind not in allowed:
        raise UnknownMatcher(lineno, f"failed to parse matchers: unknown matcher {kind!r}", token.raw)
    if not pattern:
        raise ParseError(lineno, "failed to parse matchers: empty pattern", token.raw)
    try:
        return create_matcher(kind, pattern, bool(negated))
    except ValueError as e:
        raise ParseError(lineno, f"failed to parse matchers: {e}", token.raw) from e


def _parse_action(token: Token, lineno: int) -> Action:
    match = _flag_action_re.match(token.text)
    if match is not None:
        range_, sign, flag = match.groups()
        if flag not in FLAGS:
            raise UnknownFlag(lineno, f"failed to parse actions: unknown flag {flag!r}", token.raw)
        return FlagAction(flag, sign == "+", RANGES.get(range_))

    match = _var_action_re.match(token.text)
    if match is None:
        raise ParseError(lineno, "failed to parse actions: unexpected token", token.raw)
    var, value = match.groups()
    if var not in VARIABLES:
        raise UnknownFlag(lineno, f"failed to parse actions: unknown variable {var!r}", token.raw)
    if var == "max-frames":
        try:
            value = int(value)
        except ValueError:
            raise ParseError(lineno, "failed to parse actions: max-frames expects an integer", token.raw) from None
    try:
        return VarAction(var, value)
    except ValueError as e:
        raise ParseError(lineno, f"failed to parse actions: {e}", token.raw) from e


def _parse_frame_context(tokens: list[Token], pos: int, lineno: int, what: str) -> tuple[Matcher, int]:
    """Parses ``[ matcher ]`` starting at ``pos``."""
    if len(tokens) < pos + 3 or tokens[pos].raw != "[" or tokens[pos + 2].raw != "]":
        token = tokens[pos].raw if pos < len(tokens) else None
        raise ParseError(lineno, f"failed to parse {what}: expected [ matcher ]", token)
    matcher = _parse_matcher(tokens[pos + 1], lineno, ENHANCEMENT_MATCHERS)
    if matcher.scope != "frame":
        raise ParseError(lineno, f"failed to parse {what}: expected a frame matcher", tokens[pos + 1].raw)
    return matcher, pos + 3


def parse_enhancement_line(line: str, lineno: int = 1) -> EnhancementRule:
    line = _separate_frame_context(_strip_comment(line, lineno), lineno)
    tokens = tokenize(line, lineno)
    pos = 0
    caller = callee = None

    if tokens and tokens[0].raw == "[":
        caller, pos = _parse_frame_context(tokens, 0, lineno, "matchers")
        if pos >= len(tokens) or tokens[pos].raw != "|":
            raise ParseError(lineno, "failed to parse matchers: expected '|' after caller")
        pos += 1

    matchers = []
    while pos < len(tokens) and not tokens[pos].is_action and tokens[pos].raw != "|":
        if tokens[pos].raw in ("[", "]"):
            raise ParseError(lineno, "failed to parse matchers: unexpected bracket", tokens[pos].raw)
        matchers.append(_parse_matcher(tokens[pos], lineno, ENHANCEMENT_MATCHERS))
        pos += 1
    if not matchers:
        raise ParseError(lineno, "failed to parse matchers: no matchers")

    if pos < len(tokens) and tokens[pos].raw == "|":
        callee, pos = _parse_frame_context(tokens, pos + 1, lineno, "matchers")

    actions = [_parse_action(token, lineno) for token in tokens[pos:]]
    if not actions:
        raise ParseError(lineno, "failed to parse actions: no actions")

    return EnhancementRule(
        matchers=tuple(matchers),
        actions=tuple(actions),
        caller=caller,
        callee=callee,
        lineno=lineno,
    )


def parse_fingerprinting_line(line: str, lineno: int = 1) -> FingerprintingRule:
    parts = _split(_strip_comment(line, lineno), "->", lineno)
    if len(parts) != 2:
        raise ParseError(lineno, "failed to parse actions: expected a single '->'")
    left, right = parts

    matchers = []
    for token in tokenize(left, lineno):
        if token.raw in ("[", "]", "|"):
            raise ParseError(lineno, "failed to parse matchers: caller and callee matchers are not supported", token.raw)
        matchers.append(_parse_matcher(token, lineno, FINGERPRINTING_MATCHERS))
    if not matchers:
        raise ParseError(lineno, "failed to parse matchers: no matchers")

    attributes = []
    while True:
        match = _attribute_re.search(right)
        if match is None:
            break
        key, value = match.groups()
        if key not in FINGERPRINT_ATTRIBUTES:
            raise UnknownFlag(lineno, f"failed to parse actions: unknown attribute {key!r}", match.group(0).strip())
        attributes.insert(0, (key, _unquote(value, lineno)))
        right = right[: match.start()]

    fingerprint = []
    for raw in _split(right, ",", lineno):
        value = _unquote(raw, lineno)
        if not value:
            raise ParseError(lineno, "failed to parse actions: empty fingerprint value", raw)
        fingerprint.append(value)

    return FingerprintingRule(
        matchers=tuple(matchers),
        fingerprint=tuple(fingerprint),
        attributes=tuple(attributes),
        lineno=lineno,
    )


def _iter_rule_lines(text: str) -> Iterator[tuple[int, str]]:
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        yield lineno, line


def _parse(text: str, parse_line: Callable[[str, int], T]) -> tuple[T, ...]:
    # any failing line aborts before a single rule is handed out
    rules = tuple(parse_line(line, lineno) for lineno, line in _iter_rule_lines(text))
    logger.debug("compiled %d rules", len(rules))
    return rules


def parse_enhancements(text: str) -> tuple[EnhancementRule, ...]:
    return _parse(text, parse_enhancement_line)


def parse_fingerprinting(text: str) -> tuple[FingerprintingRule, ...]:
    return _parse(text, parse_fingerprinting_line)
