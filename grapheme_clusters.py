import logging
import operator
import threading
from bisect import bisect_left
from dataclasses import dataclass

import regex as re
from grapheme import graphemes

log = logging.getLogger(__name__)

# cap on literal hits collected when a match fails validation
MAX_DIAGNOSTIC_HITS = 20


class Grapheme(str):
    """One extended grapheme cluster."""
    __slots__ = ()

    @property
    def value(self):
        return str(self)


def _compile(pattern, flags=0):
    if isinstance(pattern, str):
        return re.compile(pattern, flags)
    if flags:
        raise ValueError("cannot process flags argument with a compiled pattern")
    return pattern


class Gstr(str):
    """Text indexed, sliced and searched in grapheme clusters.

    Equality and hashing are those of the raw text. ``len()`` is the number
    of clusters. Clusters and the offset map are built on first use, at most
    once per instance, and never change afterwards.
    """

    def __new__(cls, content=""):
        self = str.__new__(cls, content)
        self._graphemes = None
        self._offsets = None
        self._lock = threading.RLock()
        return self

    def __reduce__(self):
        return (self.__class__, (str(self),))

    def __repr__(self):
        return "{}({!r})".format(self.__class__.__name__, str(self))

    def __len__(self):
        return len(self.graphemes())

    def __iter__(self):
        return iter(self.graphemes())

    def __getitem__(self, key):
        if hasattr(key, "__index__"):
            key = operator.index(key)
        if isinstance(key, int):
            return self.graphemes()[key]
        elif isinstance(key, slice):
            return self.__class__("".join(self.graphemes()[key]))
        else:
            return super().__getitem__(key)

    def __add__(self, other):
        if not isinstance(other, str):
            return NotImplemented
        return self.__class__(str(self) + str(other))

    def __radd__(self, other):
        if not isinstance(other, str):
            return NotImplemented
        return self.__class__(str(other) + str(self))

    def graphemes(self):
        if self._graphemes is None:
            with self._lock:
                if self._graphemes is None:
                    self._graphemes = tuple(Grapheme(g) for g in graphemes(str(self)))
                    log.debug("segmented %d code points into %d clusters",
                              str.__len__(self), len(self._graphemes))
        return self._graphemes

    def offsets(self):
        """Return ``(offset, grapheme_index)`` for the start of every cluster."""
        if self._offsets is None:
            with self._lock:
                if self._offsets is None:
                    pairs = []
                    offset = 0
                    for index, g in enumerate(self.graphemes()):
                        pairs.append((offset, index))
                        offset += str.__len__(g)
                    self._offsets = tuple(pairs)
        return self._offsets

    def grapheme_index(self, offset):
        """Map a raw text offset to the grapheme index it starts or falls before.

        An offset inside a cluster resolves to the following cluster, and an
        offset past the last cluster start resolves to ``len(self)``.
        """
        pairs = self.offsets()
        i = bisect_left(pairs, (offset,))
        if i < len(pairs):
            return pairs[i][1]
        return len(pairs)

    def span_to_grapheme_indices(self, start, end):
        return self.grapheme_index(start), self.grapheme_index(end)

    def slice(self, start, end):
        """Return clusters ``[start, end)`` as a new Gstr.

        A negative index ``v`` means ``len(self) + v + 1``, so ``-1`` is one
        past the last cluster and ``s.slice(0, -1) == s``. Indices outside
        ``[0, len(self)]`` after that raise IndexError.
        """
        g_list = self.graphemes()
        n = len(g_list)
        if start < 0:
            start = n + start + 1
        if end < 0:
            end = n + end + 1
        if not 0 <= start <= n or not 0 <= end <= n:
            raise IndexError(
                "slice({}, {}) out of range for {} graphemes".format(start, end, n))
        return self.__class__("".join(g_list[start:end]))

    def contains(self, substring):
        return str(substring) in str(self)

    def match_from_span(self, raw_start, raw_end):
        g_start, g_end = self.span_to_grapheme_indices(raw_start, raw_end)
        return GraphemeMatch(g_start, g_end, self.slice(g_start, g_end))

    def find(self, pattern, flags=0):
        """Return the first match in grapheme indices, or None."""
        m = _compile(pattern, flags).search(str(self))
        if m is None:
            return None
        return self.match_from_span(m.start(), m.end())

    def finditer(self, pattern, flags=0):
        return MatchSequence(self, _compile(pattern, flags))

    def findall(self, pattern, flags=0):
        return list(self.finditer(pattern, flags))


class MatchSequence(object):
    """Non-overlapping matches of a pattern; every iteration searches afresh."""

    def __init__(self, source, pattern):
        self.source = source
        self.pattern = pattern

    def __iter__(self):
        for m in self.pattern.finditer(str(self.source)):
            yield self.source.match_from_span(m.start(), m.end())

    def __repr__(self):
        return "MatchSequence({!r}, {!r})".format(self.source, self.pattern)


class InvalidMatchError(AssertionError):
    """A match whose indices do not reproduce its text in the given source."""

    def __init__(self, match, source, found, hits):
        self.match = match
        self.expected = match.text
        self.found = found
        self.hits = hits
        lines = []
        if hits:
            lines.append("not found at [{},{}] but was found at".format(
                match.start, match.end))
            for offsets, hit in hits:
                lines.append("  [{},{}] (offsets {}-{}): {!r}".format(
                    hit.start, hit.end, offsets[0], offsets[1], str(hit.text)))
        lines.append("substring: {!r} not at source.slice({},{}): {!r}".format(
            str(self.expected), match.start, match.end,
            None if found is None else str(found)))
        lines.append("invalid {!r}".format(match))
        lines.append("source: {!r}".format(str(source)))
        super().__init__("\n".join(lines))


@dataclass(frozen=True)
class GraphemeMatch:
    start: int
    end: int
    text: Gstr

    def __post_init__(self):
        if not isinstance(self.text, Gstr):
            object.__setattr__(self, "text", Gstr(self.text))

    def __str__(self):
        return str(self.text)

    def as_str(self):
        return str(self.text)

    def to_gstr(self):
        return self.text

    def _found_in(self, source):
        # recorded indices are never negative
        if self.start < 0 or self.end < 0:
            return None
        try:
            return source.slice(self.start, self.end)
        except IndexError:
            return None

    def is_valid(self, source):
        if not isinstance(source, Gstr):
            source = Gstr(source)
        return self._found_in(source) == self.text

    def ensure_valid(self, source):
        """Raise InvalidMatchError unless re-slicing ``source`` gives back the text.

        The error lists every place the text does occur in ``source``, found
        by searching for it as a literal.
        """
        if not isinstance(source, Gstr):
            source = Gstr(source)
        found = self._found_in(source)
        if found == self.text:
            log.debug("Successful match found at: %r", self)
            return self
        literal = re.compile(re.escape(str(self.text)))
        hits = []
        for m in literal.finditer(str(source)):
            if len(hits) >= MAX_DIAGNOSTIC_HITS:
                break
            hits.append(((m.start(), m.end()), source.match_from_span(m.start(), m.end())))
        raise InvalidMatchError(self, source, found, hits)
