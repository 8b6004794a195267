import base64
from typing import Any, Iterable, TypeVar

import msgpack

from .errors import ParseError
from .glob import Cache

# bumped whenever the config structure changes shape
CONFIG_STRUCTURE_VERSION = 1

R = TypeVar("R", bound="Ruleset")


class Ruleset:
    """
    An ordered, immutable collection of compiled rules.

    Instances are never modified after construction and can be shared
    between any number of threads.
    """

    kind = "rules"

    def __init__(self, rules: Iterable[Any] = (), cache: Cache | None = None):
        self._rules = tuple(rules)
        self._cache = cache

    @staticmethod
    def _parse_rules(input: str) -> tuple:
        raise NotImplementedError

    @property
    def rules(self) -> tuple:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    def __eq__(self, other) -> bool:
        return type(other) is type(self) and self._rules == other._rules

    def __hash__(self) -> int:
        return hash((type(self), self._rules))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} rules={len(self._rules)}>"

    def __str__(self) -> str:
        return "\n".join(rule.text for rule in self._rules)

    @classmethod
    def empty(cls: type[R]) -> R:
        """
        Creates a ruleset with no rules.
        """
        return cls()

    @classmethod
    def parse(cls: type[R], input: str, cache: Cache | None = None) -> R:
        """
        Parses a ruleset from a string.

        :param input: The input string.
        :param cache: A cache that memoizes rule and regex construction.
        """
        if cache is None:
            return cls(cls._parse_rules(input))
        rules = cache.get_or_insert((cls.kind, input), lambda: cls._parse_rules(input))
        return cls(rules, cache)

    @classmethod
    def from_config_structure(cls: type[R], input: bytes, cache: Cache | None = None) -> R:
        """
        Parses a ruleset from the msgpack representation.

        :param input: The input in msgpack format.
        :param cache: A cache that memoizes rule and regex construction.
        """
        try:
            version, kind, rules = msgpack.unpackb(input, raw=False)
        except (ValueError, TypeError, msgpack.UnpackException) as e:
            raise ParseError(0, f"invalid config structure: {e}") from e
        if version != CONFIG_STRUCTURE_VERSION:
            raise ParseError(0, f"unsupported config structure version {version!r}")
        if kind != cls.kind:
            raise ParseError(0, f"config structure holds {kind!r}, not {cls.kind!r}")
        return cls.parse("\n".join(rules), cache)

    def to_config_structure(self) -> bytes:
        return msgpack.packb(
            [CONFIG_STRUCTURE_VERSION, self.kind, [rule.text for rule in self._rules]],
            use_bin_type=True,
        )

    def dumps(self) -> str:
        """Returns a compact string that :meth:`loads` accepts."""
        return base64.urlsafe_b64encode(self.to_config_structure()).decode("ascii").rstrip("=")

    @classmethod
    def loads(cls: type[R], data: str | bytes, cache: Cache | None = None) -> R:
        if isinstance(data, str):
            data = data.encode("ascii")
        padded = data + b"=" * (-len(data) % 4)
        try:
            structure = base64.urlsafe_b64decode(padded)
        except ValueError as e:
            raise ParseError(0, f"invalid config string: {e}") from e
        return cls.from_config_structure(structure, cache)

    def extend_from(self: R, other: R) -> R:
        """
        Returns a new ruleset with the rules of ``other`` appended to the
        rules of this one.
        """
        return type(self)(self._rules + other._rules, self._cache or other._cache)
