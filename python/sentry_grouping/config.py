"""
Grouping configuration and the registry of compiled rulesets.

Which algorithm version and which rulesets a project uses is decided and
stored elsewhere; this module only carries that selection around
(:class:`GroupingConfig`) and holds the compiled rulesets it refers to
(:class:`RulesetRegistry`).
"""

import logging
import os
import threading
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Mapping

from .enhancers import Enhancements
from .errors import ConfigError, ParseError
from .fingerprinting import FingerprintingRules
from .glob import Cache
from .ruleset import Ruleset
from .strategies import DEFAULT_VERSION, AlgorithmVersion

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = int(os.environ.get("SENTRY_GROUPING_CACHE_SIZE", "1000"))


@dataclass(frozen=True)
class GroupingConfig:
    """
    The grouping selection of one project.

    :param algorithm_version: The version of the default grouping algorithm.
    :param enhancements_id: The registry id of the enhancement rules, if any.
    :param fingerprinting_id: The registry id of the fingerprinting rules, if any.
    """

    algorithm_version: AlgorithmVersion = DEFAULT_VERSION
    enhancements_id: str | None = None
    fingerprinting_id: str | None = None

    def __post_init__(self):
        try:
            version = AlgorithmVersion(self.algorithm_version)
        except ValueError:
            raise ConfigError(f"unknown grouping algorithm {self.algorithm_version!r}") from None
        object.__setattr__(self, "algorithm_version", version)

    def upgrade(self, version: AlgorithmVersion | str, force: bool = False) -> "GroupingConfig":
        """
        Returns a config that uses ``version``.

        Versions only move forward; going back to an older version requires
        ``force``.
        """
        new_config = replace(self, algorithm_version=version)
        if new_config.algorithm_version.ordinal < self.algorithm_version.ordinal:
            if not force:
                raise ConfigError(
                    f"refusing to downgrade from {self.algorithm_version.value} "
                    f"to {new_config.algorithm_version.value}"
                )
            logger.warning(
                "downgrading grouping algorithm from %s to %s",
                self.algorithm_version.value,
                new_config.algorithm_version.value,
            )
        return new_config


class RulesetRegistry:
    """
    Holds the currently published compiled rulesets by id.

    Publishing swaps a single immutable mapping, so readers never need a lock
    and always see either the old or the new ruleset for an id. A ruleset
    that fails to compile is never published.
    """

    def __init__(self, cache: Cache | None = None):
        self.cache = cache if cache is not None else Cache(DEFAULT_CACHE_SIZE)
        self._lock = threading.Lock()
        self._rulesets: Mapping[tuple[str, str], Ruleset] = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._rulesets)

    def publish(self, ruleset_id: str, ruleset: Ruleset) -> None:
        with self._lock:
            rulesets = dict(self._rulesets)
            rulesets[(ruleset.kind, ruleset_id)] = ruleset
            self._rulesets = MappingProxyType(rulesets)
        logger.debug("published %s ruleset %r with %d rules", ruleset.kind, ruleset_id, len(ruleset))

    def _compile(self, cls: type[Ruleset], ruleset_id: str, text: str) -> Ruleset:
        try:
            ruleset = cls.parse(text, self.cache)
        except ParseError as e:
            logger.warning(
                "rejected %s ruleset %r: line %d: %s",
                cls.kind,
                ruleset_id,
                e.line,
                e.reason,
            )
            raise
        self.publish(ruleset_id, ruleset)
        return ruleset

    def compile_enhancements(self, ruleset_id: str, text: str) -> Enhancements:
        return self._compile(Enhancements, ruleset_id, text)

    def compile_fingerprinting(self, ruleset_id: str, text: str) -> FingerprintingRules:
        return self._compile(FingerprintingRules, ruleset_id, text)

    def _get(self, cls: type[Ruleset], ruleset_id: str | None, rulesets=None) -> Ruleset:
        if ruleset_id is None:
            return cls.empty()
        if rulesets is None:
            rulesets = self._rulesets
        try:
            return rulesets[(cls.kind, ruleset_id)]
        except KeyError:
            raise ConfigError(f"no {cls.kind} ruleset with id {ruleset_id!r}") from None

    def get_enhancements(self, ruleset_id: str | None) -> Enhancements:
        return self._get(Enhancements, ruleset_id)

    def get_fingerprinting(self, ruleset_id: str | None) -> FingerprintingRules:
        return self._get(FingerprintingRules, ruleset_id)

    def resolve(self, config: GroupingConfig) -> tuple[Enhancements, FingerprintingRules]:
        """Looks up both rulesets of ``config`` from the same snapshot."""
        rulesets = self._rulesets
        return (
            self._get(Enhancements, config.enhancements_id, rulesets),
            self._get(FingerprintingRules, config.fingerprinting_id, rulesets),
        )
