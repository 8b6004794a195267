from .config import GroupingConfig, RulesetRegistry
from .enhancers import Enhancements, StacktraceState
from .errors import (
    ConfigError,
    GroupingError,
    InsufficientData,
    ParseError,
    UnknownFlag,
    UnknownMatcher,
)
from .event import Event, Frame
from .fingerprinting import FingerprintingRules
from .glob import Cache
from .grouping import GroupingKey, assemble, calculate_grouping, get_grouping_key, hash_from_values
from .strategies import AlgorithmVersion

__all__ = [
    "AlgorithmVersion",
    "Cache",
    "ConfigError",
    "Enhancements",
    "Event",
    "FingerprintingRules",
    "Frame",
    "GroupingConfig",
    "GroupingError",
    "GroupingKey",
    "InsufficientData",
    "ParseError",
    "RulesetRegistry",
    "StacktraceState",
    "UnknownFlag",
    "UnknownMatcher",
    "assemble",
    "calculate_grouping",
    "get_grouping_key",
    "hash_from_values",
]
