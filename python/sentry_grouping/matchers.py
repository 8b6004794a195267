"""
Typed predicates over frames and events.

Every matcher kind knows how to evaluate itself against a single frame
(frame-scoped kinds) or against the event level match data (event-scoped
kinds). Matchers are built once by the parser and are immutable.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Mapping, Sequence

from .event import FAMILIES, Event, Frame
from .glob import Cache, glob_match

MatchData = Mapping[str, str | None]

MATCHER_ALIASES = {
    "stack.function": "function",
    "stack.module": "module",
    "stack.abs_path": "path",
    "stack.package": "package",
    "error.type": "type",
    "error.value": "value",
}

_TRUE_VALUES = ("yes", "true", "1")
_FALSE_VALUES = ("no", "false", "0")


# characters that would split a value or end it early when the rule is parsed back
_QUOTE_TRIGGERS = ('"', "#", ",", "->", "[", "]", "|")


def quote(value: str) -> str:
    if not value or any(c.isspace() for c in value) or any(t in value for t in _QUOTE_TRIGGERS):
        return '"%s"' % value.replace("\\", "\\\\").replace('"', '\\"')
    return value


@dataclass(frozen=True)
class Matcher:
    kind: str
    pattern: str
    negated: bool = False

    scope: ClassVar[str] = "frame"

    def __post_init__(self):
        pass

    def _positive_frame_match(self, frame: Frame, cache: Cache | None) -> bool:
        raise NotImplementedError

    def _positive_data_match(self, data: MatchData, cache: Cache | None) -> bool:
        raise NotImplementedError

    def matches_frame(self, frame: Frame, cache: Cache | None = None) -> bool:
        return self._positive_frame_match(frame, cache) != self.negated

    def matches_data(self, data: MatchData, cache: Cache | None = None) -> bool:
        return self._positive_data_match(data, cache) != self.negated

    @property
    def description(self) -> str:
        return "%s%s:%s" % ("!" if self.negated else "", self.kind, quote(self.pattern))

    def __str__(self) -> str:
        return self.description


class PathMatch(Matcher):
    def _value(self, frame: Frame) -> str | None:
        return frame.path

    def _positive_frame_match(self, frame, cache):
        value = self._value(frame)
        if value is None:
            return False
        value = value.replace("\\", "/")
        if glob_match(value, self.pattern, ignorecase=True, doublestar=True, path_normalize=True, cache=cache):
            return True
        if not value.startswith("/") and not self.pattern.startswith("**/"):
            return glob_match(
                value,
                "**/" + self.pattern,
                ignorecase=True,
                doublestar=True,
                path_normalize=True,
                cache=cache,
            )
        return False


class PackageMatch(PathMatch):
    def _value(self, frame):
        return frame.package


class ModuleMatch(Matcher):
    def _positive_frame_match(self, frame, cache):
        return glob_match(frame.module, self.pattern, doublestar=True, path_normalize=True, cache=cache)


class FunctionMatch(Matcher):
    def _positive_frame_match(self, frame, cache):
        return glob_match(frame.function, self.pattern, cache=cache)


class CategoryMatch(Matcher):
    def _positive_frame_match(self, frame, cache):
        return glob_match(frame.category, self.pattern, cache=cache)


class FamilyMatch(Matcher):
    def __post_init__(self):
        for family in self.families:
            if family != "all" and family not in FAMILIES:
                raise ValueError(f"unknown family {family!r}")

    @property
    def families(self) -> frozenset:
        return frozenset(f.strip() for f in self.pattern.split(",") if f.strip())

    def _positive_frame_match(self, frame, cache):
        families = self.families
        return "all" in families or frame.family in families


class InAppMatch(Matcher):
    def __post_init__(self):
        if self.pattern.lower() not in _TRUE_VALUES + _FALSE_VALUES:
            raise ValueError(f"app matcher expects yes or no, got {self.pattern!r}")

    def _positive_frame_match(self, frame, cache):
        if frame.in_app is None:
            return False
        return frame.in_app is (self.pattern.lower() in _TRUE_VALUES)


class EventFieldMatch(Matcher):
    scope: ClassVar[str] = "event"
    field_name: ClassVar[str] = ""

    def _positive_data_match(self, data, cache):
        return glob_match(data.get(self.field_name), self.pattern, cache=cache)


class ExceptionTypeMatch(EventFieldMatch):
    field_name = "ty"


class ExceptionValueMatch(EventFieldMatch):
    field_name = "value"


class MessageMatch(EventFieldMatch):
    field_name = "message"


MATCHERS: dict[str, type[Matcher]] = {
    "family": FamilyMatch,
    "path": PathMatch,
    "module": ModuleMatch,
    "function": FunctionMatch,
    "package": PackageMatch,
    "app": InAppMatch,
    "category": CategoryMatch,
    "type": ExceptionTypeMatch,
    "value": ExceptionValueMatch,
    "message": MessageMatch,
}

ENHANCEMENT_MATCHERS = frozenset(MATCHERS) - {"message"}
FINGERPRINTING_MATCHERS = frozenset(MATCHERS)


def create_matcher(kind: str, pattern: str, negated: bool = False) -> Matcher:
    """
    Builds the matcher for ``kind``.

    Raises ``KeyError`` for unknown kinds and ``ValueError`` for patterns the
    kind does not accept.
    """
    kind = MATCHER_ALIASES.get(kind, kind)
    return MATCHERS[kind](kind, pattern, negated)


def event_match_data(event: Event) -> dict[str, str | None]:
    data = dict(event.exception_data)
    data["message"] = event.message_text
    return data


def matches_frames(
    matchers: Sequence[Matcher],
    frames: Sequence[Frame],
    data: MatchData,
    cache: Cache | None = None,
) -> Frame | bool:
    """
    Tests ANDed ``matchers`` against an event.

    Event-scoped matchers are evaluated once against ``data``; frame-scoped
    matchers must all hold on the same frame. Returns the first frame that
    satisfied the frame-scoped matchers, ``True`` when the rule has none, or
    ``False``.
    """
    for matcher in matchers:
        if matcher.scope == "event" and not matcher.matches_data(data, cache):
            return False

    frame_matchers = [m for m in matchers if m.scope == "frame"]
    if not frame_matchers:
        return True

    for frame in frames:
        if all(m.matches_frame(frame, cache) for m in frame_matchers):
            return frame
    return False


def evaluate(kind: str, pattern: str, frame_or_event: Any) -> bool:
    """
    Evaluates a single ``kind:pattern`` predicate.

    Against a :class:`Frame`, event-scoped kinds never match. Against an
    :class:`Event`, frame-scoped kinds match when any of its frames does.
    """
    negated = kind.startswith("!")
    matcher = create_matcher(kind.lstrip("!"), pattern, negated)
    if isinstance(frame_or_event, Frame):
        if matcher.scope == "event":
            return False
        return matcher.matches_frame(frame_or_event)
    return matches_frames([matcher], frame_or_event.frames, event_match_data(frame_or_event)) is not False
