"""
The default grouping algorithm.

An event is grouped by the first of these that it carries:

1. its stacktrace (the exception's, if it has one), reduced to the frames
   that contribute to grouping,
2. the exception type and value,
3. the raw message template,
4. the formatted message.
"""

import enum
import logging
from typing import Sequence

from .errors import InsufficientData
from .event import Event, Frame

logger = logging.getLogger(__name__)


class AlgorithmVersion(str, enum.Enum):
    LEGACY = "legacy:2019-03-12"
    NEWSTYLE = "newstyle:2023-01-11"

    @property
    def ordinal(self) -> int:
        return list(AlgorithmVersion).index(self)


LATEST_VERSION = AlgorithmVersion.NEWSTYLE

# Renders frames as exactly (module, filename, context_line). Newer versions
# are opt-in through GroupingConfig.upgrade().
DEFAULT_VERSION = AlgorithmVersion.LEGACY


def get_grouping_frames(frames: Sequence[Frame], max_frames: int = 0) -> list[Frame]:
    """
    Reduces classified frames to the ones that contribute to grouping.

    Frames excluded from grouping are dropped. If any remaining frame has a
    known in-app value only in-app frames are kept, unless there are none.
    Finally at most ``max_frames`` frames closest to the crash are kept.
    """
    relevant = [frame for frame in frames if frame.include_in_grouping]
    if any(frame.in_app is not None for frame in relevant):
        in_app = [frame for frame in relevant if frame.in_app]
        if in_app:
            relevant = in_app
    if max_frames:
        relevant = relevant[-max_frames:]
    return relevant


def get_frame_component(frame: Frame, version: AlgorithmVersion = DEFAULT_VERSION) -> str | None:
    context_line = frame.context_line
    if context_line is None and version is AlgorithmVersion.NEWSTYLE:
        context_line = frame.function
    values = (frame.module, frame.filename, context_line)
    if not any(values):
        return None
    return "|".join(v or "" for v in values)


def compute(
    event: Event,
    classified_frames: Sequence[Frame] | None = None,
    max_frames: int = 0,
    version: AlgorithmVersion = DEFAULT_VERSION,
) -> list[str]:
    """
    Computes the default grouping key of ``event``.

    :param classified_frames: The event frames after enhancement rules ran.
                              Defaults to the event's own frames.
    :param max_frames: The max-frames bound from the enhancement rules.
    :param version: The grouping algorithm version.
    """
    if classified_frames is None:
        classified_frames = event.frames

    components = []
    for frame in get_grouping_frames(classified_frames, max_frames):
        component = get_frame_component(frame, version)
        if component is not None:
            components.append(component)
    if components:
        return components

    exc = event.exception
    if exc is not None and exc.type and exc.value:
        return [exc.type, exc.value]

    message = event.message
    if message is not None and message.raw:
        return [message.raw]
    if message is not None and message.formatted:
        return [message.formatted]

    if exc is not None and (exc.type or exc.value):
        return [exc.type or exc.value]

    if classified_frames:
        logger.debug("none of the %d frames contribute to grouping", len(classified_frames))
    raise InsufficientData("event has no stacktrace, exception or message to group by")
