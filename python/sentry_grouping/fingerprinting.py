import logging
import re
from dataclasses import dataclass
from typing import Sequence

from .event import Event, Frame
from .matchers import MATCHER_ALIASES, event_match_data
from .parser import parse_fingerprinting
from .rules import FingerprintingRule
from .ruleset import Ruleset

logger = logging.getLogger(__name__)

_default_token_re = re.compile(r"^\{\{\s*default\s*\}\}$")
_variable_re = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")

_FRAME_VARIABLES = ("function", "module", "package", "family", "path")


def is_default_fingerprint_var(value: str) -> bool:
    return isinstance(value, str) and _default_token_re.match(value) is not None


def _get_variable(name: str, event: Event, frame: Frame | None) -> str | None:
    name = MATCHER_ALIASES.get(name, name)
    if name in _FRAME_VARIABLES:
        return getattr(frame, name) if frame is not None else None
    if name == "type":
        return event.exception.type if event.exception is not None else None
    if name == "value":
        return event.exception.value if event.exception is not None else None
    if name == "message":
        return event.message_text
    return None


def resolve_fingerprint_values(
    values: Sequence[str], event: Event, frame: Frame | None = None
) -> tuple[str, ...]:
    """
    Expands ``{{ variable }}`` references in fingerprint values.

    ``{{ default }}`` is left alone, it is expanded when the final key is
    assembled.
    """

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        value = _get_variable(name, event, frame)
        if value is None:
            return f"<no-value-for-{name}>"
        return value

    rv = []
    for value in values:
        if is_default_fingerprint_var(value):
            rv.append(value)
        else:
            rv.append(_variable_re.sub(_sub, value))
    return tuple(rv)


@dataclass(frozen=True)
class FingerprintMatch:
    rule: FingerprintingRule
    fingerprint: tuple[str, ...]
    frame: Frame | None = None

    @property
    def attributes(self) -> dict[str, str]:
        return dict(self.rule.attributes)


class FingerprintingRules(Ruleset):
    """
    A suite of server-side fingerprinting rules.

    The first rule that fully matches an event decides its fingerprint.
    """

    kind = "fingerprinting"

    _parse_rules = staticmethod(parse_fingerprinting)

    def get_fingerprint_values_for_event(
        self, event: Event, frames: Sequence[Frame] | None = None
    ) -> FingerprintMatch | None:
        """
        Returns the fingerprint of the first matching rule, or ``None``.

        :param event: The event to match.
        :param frames: The classified frames of the event. Defaults to the
                       event's own frames.
        """
        if not self._rules:
            return None
        if frames is None:
            frames = event.frames
        data = event_match_data(event)

        for rule in self._rules:
            match = rule.get_match(frames, data, self._cache)
            if match is False:
                continue
            frame = match if isinstance(match, Frame) else (frames[-1] if frames else None)
            logger.debug("fingerprinting rule on line %d matched", rule.lineno)
            return FingerprintMatch(
                rule=rule,
                fingerprint=resolve_fingerprint_values(rule.fingerprint, event, frame),
                frame=frame if isinstance(match, Frame) else None,
            )
        return None


def evaluate(
    event: Event, classified_frames: Sequence[Frame] | None, ruleset: FingerprintingRules
) -> tuple[str, ...] | None:
    match = ruleset.get_fingerprint_values_for_event(event, classified_frames)
    if match is None:
        return None
    return match.fingerprint
