from dataclasses import dataclass, field
from typing import Sequence

from .actions import Action
from .event import Frame
from .glob import Cache
from .matchers import MatchData, Matcher, matches_frames, quote


@dataclass(frozen=True)
class EnhancementRule:
    matchers: tuple[Matcher, ...]
    actions: tuple[Action, ...]
    caller: Matcher | None = None
    callee: Matcher | None = None
    lineno: int = field(default=0, compare=False)

    def matches_frame(
        self,
        frames: Sequence[Frame],
        idx: int,
        exception_data: MatchData,
        cache: Cache | None = None,
    ) -> bool:
        frame = frames[idx]
        for matcher in self.matchers:
            if matcher.scope == "event":
                if not matcher.matches_data(exception_data, cache):
                    return False
            elif not matcher.matches_frame(frame, cache):
                return False

        if self.caller is not None:
            if idx == 0 or not self.caller.matches_frame(frames[idx - 1], cache):
                return False
        if self.callee is not None:
            if idx + 1 >= len(frames) or not self.callee.matches_frame(frames[idx + 1], cache):
                return False
        return True

    @property
    def text(self) -> str:
        parts = []
        if self.caller is not None:
            parts.append(f"[ {self.caller} ] |")
        parts.extend(str(m) for m in self.matchers)
        if self.callee is not None:
            parts.append(f"| [ {self.callee} ]")
        parts.extend(str(a) for a in self.actions)
        return " ".join(parts)

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class FingerprintingRule:
    matchers: tuple[Matcher, ...]
    fingerprint: tuple[str, ...]
    attributes: tuple[tuple[str, str], ...] = ()
    lineno: int = field(default=0, compare=False)

    def get_match(
        self,
        frames: Sequence[Frame],
        data: MatchData,
        cache: Cache | None = None,
    ) -> Frame | bool:
        """
        Returns the frame that satisfied the frame matchers, ``True`` if the
        rule only has event matchers and they all hold, else ``False``.
        """
        return matches_frames(self.matchers, frames, data, cache)

    @property
    def text(self) -> str:
        rv = "%s -> %s" % (
            " ".join(str(m) for m in self.matchers),
            ", ".join(quote(v) for v in self.fingerprint),
        )
        for key, value in self.attributes:
            rv += ' %s="%s"' % (key, value.replace("\\", "\\\\").replace('"', '\\"'))
        return rv

    def __str__(self) -> str:
        return self.text

