import re
import threading
from collections import OrderedDict
from typing import Any, Callable, Hashable


class Cache:
    """
    An LRU cache for memoizing the construction of regexes and rulesets.

    The cache is safe to share between threads. Values are built outside of
    the lock, so two threads racing on the same key may both build it; the
    first one to finish wins.

    :param size: The number of entries that will be cached.
    """

    def __init__(self, size: int):
        if size < 0:
            raise ValueError("cache size must not be negative")
        self.size = size
        self._entries: OrderedDict = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get_or_insert(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        with self._lock:
            try:
                self._entries.move_to_end(key)
                return self._entries[key]
            except KeyError:
                pass

        value = factory()
        if self.size == 0:
            return value

        with self._lock:
            value = self._entries.setdefault(key, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.size:
                self._entries.popitem(last=False)
        return value


def translate(pattern: str, doublestar: bool = False) -> str:
    """
    Translates a glob pattern into a regular expression.

    With ``doublestar`` the pattern is treated as a path: ``*`` and ``?`` do
    not cross ``/`` and ``**`` matches any number of segments, including
    none. Without it ``*`` matches anything.
    """
    rv = []
    i = 0
    n = len(pattern)
    while i < n:
        if doublestar and pattern.startswith("**/", i):
            rv.append("(?:.*/)?")
            i += 3
        elif doublestar and pattern.startswith("/**", i) and i + 3 == n:
            rv.append("(?:/.*)?")
            i += 3
        elif pattern.startswith("**", i):
            rv.append(".*")
            i += 2
        elif pattern[i] == "*":
            rv.append("[^/]*" if doublestar else ".*")
            i += 1
        elif pattern[i] == "?":
            rv.append("[^/]" if doublestar else ".")
            i += 1
        elif pattern[i] == "[":
            end = pattern.find("]", i + 2)
            if end == -1:
                rv.append(re.escape("["))
                i += 1
                continue
            body = pattern[i + 1 : end].replace("\\", "\\\\")
            if body.startswith("!"):
                body = "^" + body[1:]
            elif body.startswith("^"):
                body = "\\" + body
            rv.append("[%s]" % body)
            i = end + 1
        else:
            rv.append(re.escape(pattern[i]))
            i += 1
    return "".join(rv)


def compile_glob(
    pattern: str,
    ignorecase: bool = False,
    doublestar: bool = False,
    path_normalize: bool = False,
    cache: Cache | None = None,
) -> re.Pattern:
    if path_normalize:
        pattern = pattern.replace("\\", "/")

    def build() -> re.Pattern:
        flags = re.DOTALL | (re.IGNORECASE if ignorecase else 0)
        return re.compile(translate(pattern, doublestar=doublestar), flags)

    if cache is None:
        return build()
    return cache.get_or_insert(("glob", pattern, ignorecase, doublestar), build)


def glob_match(
    value: str | None,
    pattern: str,
    ignorecase: bool = False,
    doublestar: bool = False,
    path_normalize: bool = False,
    cache: Cache | None = None,
) -> bool:
    """
    Matches ``value`` against the glob ``pattern``.

    ``None`` never matches. With ``path_normalize`` backslashes in both the
    value and the pattern are treated as ``/``.
    """
    if value is None:
        return False
    if path_normalize:
        value = value.replace("\\", "/")
    regex = compile_glob(
        pattern,
        ignorecase=ignorecase,
        doublestar=doublestar,
        path_normalize=path_normalize,
        cache=cache,
    )
    return regex.fullmatch(value) is not None
