import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from .config import GroupingConfig, RulesetRegistry
from .enhancers import Enhancements
from .errors import GroupingError
from .event import Event
from .fingerprinting import FingerprintingRules, FingerprintMatch, is_default_fingerprint_var
from .strategies import DEFAULT_VERSION, AlgorithmVersion, compute

logger = logging.getLogger(__name__)


def hash_from_values(values: Sequence[Any]) -> str:
    """
    Hashes an ordered grouping key.

    Every component is terminated, so moving characters between components
    changes the hash.
    """
    result = hashlib.md5(usedforsecurity=False)
    for value in values:
        result.update(str(value).encode("utf-8", errors="replace"))
        result.update(b"\x00")
    return result.hexdigest()


@dataclass(frozen=True)
class GroupingKey:
    values: tuple[str, ...]
    source: str = "default"

    @property
    def hash(self) -> str:
        return hash_from_values(self.values)


def _expand_default(values: Sequence[Any], default_key: Sequence[str] | None) -> tuple[str, ...]:
    rv = []
    for value in values:
        if is_default_fingerprint_var(value):
            if default_key is None:
                raise GroupingError("fingerprint references the default key but none was computed")
            rv.extend(default_key)
        else:
            rv.append(str(value))
    return tuple(rv)


def _non_empty(values: tuple[str, ...], source: str) -> GroupingKey:
    if not values:
        raise GroupingError(f"{source} fingerprint expanded to an empty grouping key")
    return GroupingKey(values, source)


def _references_default(values: Sequence[Any] | None) -> bool:
    return bool(values) and any(is_default_fingerprint_var(v) for v in values)


def assemble(
    client_fingerprint: Sequence[Any] | None,
    default_key: Sequence[str] | None,
    override_key: Sequence[str] | None = None,
) -> GroupingKey:
    """
    Merges the client fingerprint, the default key and the rule override
    into the final grouping key.

    A client fingerprint always wins; ``{{ default }}`` inside it is replaced
    in place by the default key. Without one the override is used, else the
    default key. An empty client fingerprint counts as absent.
    """
    if client_fingerprint:
        return _non_empty(_expand_default(client_fingerprint, default_key), "client")
    if override_key:
        return _non_empty(_expand_default(override_key, default_key), "rule")
    if not default_key:
        raise GroupingError("no grouping key could be assembled")
    return GroupingKey(tuple(default_key), "default")


@dataclass(frozen=True)
class GroupingResult:
    key: GroupingKey
    default_key: tuple[str, ...] | None
    fingerprint_match: FingerprintMatch | None
    max_frames: int
    algorithm_version: AlgorithmVersion

    @property
    def hash(self) -> str:
        return self.key.hash


def calculate_grouping(
    event: Event,
    enhancements: Enhancements | None = None,
    fingerprinting: FingerprintingRules | None = None,
    version: AlgorithmVersion = DEFAULT_VERSION,
) -> GroupingResult:
    """
    Runs the whole grouping pipeline for one event.

    The default key is only computed when the final key needs it, so events
    without any groupable interface still group by a client fingerprint or a
    matching rule.
    """
    classified = (enhancements or Enhancements.empty()).classify(event.frames, event.exception_data)

    fingerprint_match = None
    if fingerprinting is not None:
        fingerprint_match = fingerprinting.get_fingerprint_values_for_event(event, classified.frames)
    override_key = fingerprint_match.fingerprint if fingerprint_match is not None else None
    client_fingerprint = event.fingerprint or None

    default_key = None
    if client_fingerprint:
        needs_default = _references_default(client_fingerprint)
    elif override_key:
        needs_default = _references_default(override_key)
    else:
        needs_default = True
    if needs_default:
        default_key = tuple(
            compute(event, classified.frames, classified.state.max_frames, version)
        )

    key = assemble(client_fingerprint, default_key, override_key)
    logger.debug("grouped event by %s key with %d components", key.source, len(key.values))
    return GroupingResult(
        key=key,
        default_key=default_key,
        fingerprint_match=fingerprint_match,
        max_frames=classified.state.max_frames,
        algorithm_version=version,
    )


def get_grouping_key(
    event: Event,
    config: GroupingConfig | None = None,
    registry: RulesetRegistry | None = None,
) -> GroupingResult:
    """
    Groups ``event`` with the rulesets and algorithm version ``config``
    selects from ``registry``.

    Both rulesets are resolved once, before evaluation starts.
    """
    config = config or GroupingConfig()
    if registry is None:
        enhancements, fingerprinting = Enhancements.empty(), FingerprintingRules.empty()
    else:
        enhancements, fingerprinting = registry.resolve(config)
    return calculate_grouping(event, enhancements, fingerprinting, config.algorithm_version)
