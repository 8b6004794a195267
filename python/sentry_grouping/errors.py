from typing import Optional


class GroupingError(Exception):
    """Base class for all errors raised by the grouping engine."""


class ParseError(GroupingError, RuntimeError):
    """
    Raised when rule text cannot be compiled.

    A single failing line rejects the whole ruleset.

    :param line: The 1-based line number of the offending rule.
    :param reason: A human readable description of the failure.
    :param token: The token the parser choked on, if any.
    """

    def __init__(self, line: int, reason: str, token: Optional[str] = None):
        self.line = line
        self.reason = reason
        self.token = token
        message = f"line {line}: {reason}"
        if token is not None:
            message = f"{message} (at {token!r})"
        super().__init__(message)


class UnknownMatcher(ParseError):
    pass


class UnknownFlag(ParseError):
    pass


class InsufficientData(GroupingError):
    """The event carries none of the interfaces grouping can use."""


class ConfigError(GroupingError):
    pass
