"""
The read-only event model the grouping engine works on.

Events are usually built from the normalized event payload with
:meth:`Event.from_dict`. All types are frozen; rule evaluation produces new
:class:`Frame` objects instead of mutating the ones it was handed.
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Mapping

FAMILIES = ("javascript", "native", "other")

_PLATFORM_FAMILIES = {
    "javascript": "javascript",
    "node": "javascript",
    "native": "native",
    "c": "native",
    "cocoa": "native",
    "objc": "native",
}

_MAX_CONTEXT_LINE_LENGTH = 120

_filename_query_re = re.compile(r"[?#].*$")
_filename_version_re = re.compile(
    r"""(?<=/)(?:
        v?(?:\d+\.)*\d+|   # version numbers, v1, 1.0.0
        [a-f0-9]{7,8}|     # short sha
        [a-f0-9]{32}|      # md5
        [a-f0-9]{40}       # sha1
    )/""",
    re.X | re.I,
)
_filename_hash_re = re.compile(r"[.-][a-f0-9]{7,40}(?=\.[a-z0-9]+$)", re.I)
_next_build_re = re.compile(r"/_next/static/[^/]+/")


def get_family(platform: str | None) -> str:
    return _PLATFORM_FAMILIES.get((platform or "").lower(), "other")


def normalize_filename(filename: str | None) -> str | None:
    """
    Strips the parts of a filename that change from build to build.

    >>> normalize_filename("http://example.com/1.2.3/app.3f9a0c1b.js?v=1")
    'http://example.com/app.js'
    """
    if not filename:
        return None
    filename = _filename_query_re.sub("", filename)
    filename = _next_build_re.sub("/_next/static/", filename)
    filename = _filename_version_re.sub("", filename)
    filename = _filename_hash_re.sub("", filename)
    return filename


def normalize_context_line(context_line: str | None) -> str | None:
    if context_line is None:
        return None
    context_line = context_line.strip()
    # minified or generated source does not make a stable key
    if not context_line or len(context_line) > _MAX_CONTEXT_LINE_LENGTH:
        return None
    return context_line


@dataclass(frozen=True)
class Frame:
    module: str | None = None
    filename: str | None = None
    abs_path: str | None = None
    context_line: str | None = None
    function: str | None = None
    package: str | None = None
    family: str = "other"
    in_app: bool | None = None
    orig_in_app: bool | None = None
    include_in_grouping: bool = True
    category: str | None = None

    @property
    def path(self) -> str | None:
        """The platform-normalized path of the frame, using ``/`` separators."""
        path = self.abs_path or self.filename
        if not path:
            return None
        return path.replace("\\", "/")

    def with_flags(self, **changes: Any) -> "Frame":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], platform: str | None = None) -> "Frame":
        in_app = data.get("in_app")
        category = data.get("category") or (data.get("data") or {}).get("category")
        family = data.get("family") or get_family(data.get("platform") or platform)
        if family not in FAMILIES:
            family = "other"
        return cls(
            module=data.get("module"),
            filename=normalize_filename(data.get("filename")),
            abs_path=normalize_filename(data.get("abs_path")),
            context_line=normalize_context_line(data.get("context_line")),
            function=data.get("function"),
            package=data.get("package"),
            family=family,
            in_app=in_app,
            orig_in_app=in_app,
            category=category,
        )


@dataclass(frozen=True)
class Stacktrace:
    frames: tuple[Frame, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, platform: str | None = None):
        if not data or not data.get("frames"):
            return None
        return cls(frames=tuple(Frame.from_dict(f, platform) for f in data["frames"] if f))


@dataclass(frozen=True)
class ExceptionInterface:
    type: str | None = None
    value: str | None = None
    stacktrace: Stacktrace | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, platform: str | None = None):
        if not data:
            return None
        # the last entry of a chained exception is the one that was raised
        if "values" in data:
            values = [v for v in data["values"] or () if v]
            if not values:
                return None
            data = values[-1]
        return cls(
            type=data.get("type"),
            value=data.get("value"),
            stacktrace=Stacktrace.from_dict(data.get("stacktrace"), platform),
        )


@dataclass(frozen=True)
class Message:
    formatted: str | None = None
    raw: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | str | None):
        if not data:
            return None
        if isinstance(data, str):
            return cls(formatted=data)
        formatted = data.get("formatted")
        raw = data.get("raw") or data.get("message")
        if not formatted and not raw:
            return None
        return cls(formatted=formatted, raw=raw)


@dataclass(frozen=True)
class Event:
    exception: ExceptionInterface | None = None
    stacktrace: Stacktrace | None = None
    message: Message | None = None
    fingerprint: tuple[str, ...] | None = None
    platform: str | None = None

    @property
    def frames(self) -> tuple[Frame, ...]:
        """The frames grouping looks at: the exception's if it has any."""
        if self.exception is not None and self.exception.stacktrace is not None:
            return self.exception.stacktrace.frames
        if self.stacktrace is not None:
            return self.stacktrace.frames
        return ()

    @property
    def exception_data(self) -> dict[str, str | None]:
        exc = self.exception
        return {
            "ty": exc.type if exc is not None else None,
            "value": exc.value if exc is not None else None,
        }

    @property
    def message_text(self) -> str | None:
        if self.message is not None:
            return self.message.formatted or self.message.raw
        if self.exception is not None:
            return self.exception.value
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        platform = data.get("platform")
        fingerprint = data.get("fingerprint")
        return cls(
            exception=ExceptionInterface.from_dict(data.get("exception"), platform),
            stacktrace=Stacktrace.from_dict(data.get("stacktrace"), platform),
            message=Message.from_dict(data.get("logentry") or data.get("message")),
            fingerprint=tuple(fingerprint) if fingerprint is not None else None,
            platform=platform,
        )
