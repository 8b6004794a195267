import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, NamedTuple

from .event import Frame
from .parser import parse_enhancements
from .rules import EnhancementRule
from .ruleset import Ruleset

logger = logging.getLogger(__name__)

ModificationResult = tuple[str | None, bool | None]


@dataclass
class StacktraceState:
    """
    Stacktrace-wide values collected while applying rules.

    ``max_frames`` is the narrowest bound proposed by any rule that matched
    at least one frame; 0 means unbounded.
    """

    max_frames: int = 0
    max_frames_rule: EnhancementRule | None = field(default=None, compare=False)


class ClassifiedFrames(NamedTuple):
    frames: list[Frame]
    state: StacktraceState


class Enhancements(Ruleset):
    """
    A suite of enhancement rules.
    """

    kind = "enhancements"

    _parse_rules = staticmethod(parse_enhancements)

    def classify(
        self,
        frames: Iterable[Frame],
        exception_data: Mapping[str, str | None] | None = None,
    ) -> ClassifiedFrames:
        """
        Applies all rules to ``frames`` and returns the reclassified frames
        together with the stacktrace state.

        Rules run in order. Each rule walks the frames oldest first and applies
        its actions to a frame as soon as it matches, so a range action taken
        on one frame is visible when the same rule reaches the next frame.
        The input frames are not modified.

        :param frames: The frames to classify, oldest call first.
        :param exception_data: Exception data to match against rules.
                               Supported fields are "ty" and "value".
        """
        frames = list(frames)
        state = StacktraceState()
        exception_data = exception_data or {}

        for rule in self._rules:
            matched = False
            for idx in range(len(frames)):
                if not rule.matches_frame(frames, idx, exception_data, self._cache):
                    continue
                matched = True
                for action in rule.actions:
                    action.apply_modifications_to_frames(frames, idx)
            if not matched:
                continue
            for action in rule.actions:
                action.update_state(state, rule)

        if state.max_frames:
            logger.debug(
                "max-frames bound %d set by rule on line %d",
                state.max_frames,
                state.max_frames_rule.lineno,
            )
        return ClassifiedFrames(frames, state)

    def apply_modifications_to_frames(
        self,
        frames: Iterable[Frame],
        exception_data: Mapping[str, str | None] | None = None,
    ) -> list[ModificationResult]:
        """
        Modifies a list of frames according to the rules in this Enhancements object.

        The returned list contains the new values of the "category" and
        "in_app" fields for each frame.
        """
        classified = self.classify(frames, exception_data)
        return [(frame.category, frame.in_app) for frame in classified.frames]


def classify(
    frames: Iterable[Frame],
    ruleset: Enhancements,
    exception_data: Mapping[str, str | None] | None = None,
) -> ClassifiedFrames:
    return ruleset.classify(frames, exception_data)
