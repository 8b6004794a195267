from dataclasses import dataclass
from typing import Any, MutableSequence

from .event import Frame
from .matchers import quote

FLAGS = {
    # flag name -> frame attribute it controls
    "app": "in_app",
    "group": "include_in_grouping",
}

RANGES = {
    "^": "toward_crash",
    "v": "away_from_crash",
}

VARIABLES = ("max-frames", "category")


class Action:
    def apply_modifications_to_frames(self, frames: MutableSequence[Frame], idx: int) -> None:
        pass

    def update_state(self, state: Any, rule: Any) -> None:
        pass


@dataclass(frozen=True)
class FlagAction(Action):
    """
    Sets the ``app`` or ``group`` flag on the matched frame.

    With a range the flag is also set on every frame toward the crash site
    (higher indexes) or away from it (lower indexes).
    """

    flag: str
    value: bool
    range: str | None = None

    def _slice(self, frames, idx):
        if self.range == "toward_crash":
            return range(idx, len(frames))
        if self.range == "away_from_crash":
            return range(0, idx + 1)
        return range(idx, idx + 1)

    def apply_modifications_to_frames(self, frames, idx):
        attr = FLAGS[self.flag]
        for i in self._slice(frames, idx):
            frames[i] = frames[i].with_flags(**{attr: self.value})

    def __str__(self) -> str:
        prefix = {v: k for k, v in RANGES.items()}.get(self.range, "")
        return "%s%s%s" % (prefix, "+" if self.value else "-", self.flag)


@dataclass(frozen=True)
class VarAction(Action):
    var: str
    value: Any

    def __post_init__(self):
        if self.var == "max-frames":
            if not isinstance(self.value, int) or isinstance(self.value, bool) or self.value < 0:
                raise ValueError("max-frames must be a non-negative integer")
        elif self.var == "category":
            if not isinstance(self.value, str) or not self.value:
                raise ValueError("category must not be empty")
        else:
            raise KeyError(self.var)

    def apply_modifications_to_frames(self, frames, idx):
        if self.var == "category":
            frames[idx] = frames[idx].with_flags(category=self.value)

    def update_state(self, state, rule):
        # 0 is "unbounded" and never narrows an existing bound
        if self.var == "max-frames" and self.value:
            if not state.max_frames or self.value < state.max_frames:
                state.max_frames = self.value
                state.max_frames_rule = rule

    def __str__(self) -> str:
        return "%s=%s" % (self.var, quote(str(self.value)))
