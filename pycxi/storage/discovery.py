"""Discovery of repeated sibling groups (``entry_1``, ``entry_2``, ...).

Suffixes are 1-based and assumed contiguous: discovery stops at the first
missing suffix, so ``entry_1, entry_2, entry_4`` counts as two entries.
"""

from __future__ import annotations

from pycxi.storage.container import Container, Handle
from pycxi.storage.format import SUFFIX_SEPARATOR, suffixed_name


class SuffixEnumerator:
    """Strategy for counting ``base_1 .. base_n`` under a parent group."""

    def count(self, container: Container, parent: Handle, base: str) -> int:
        raise NotImplementedError

    def names(self, container: Container, parent: Handle, base: str) -> list[str]:
        """Names of the discovered groups, in suffix order."""
        n = self.count(container, parent, base)
        return [suffixed_name(base, i) for i in range(1, n + 1)]


class ProbingEnumerator(SuffixEnumerator):
    """Probes ``base_1``, ``base_2``, ... until a link is missing."""

    def count(self, container: Container, parent: Handle, base: str) -> int:
        n = 0
        while container.link_exists(parent, suffixed_name(base, n + 1)):
            n += 1
        return n


class ListingEnumerator(SuffixEnumerator):
    """Counts from a single listing of the parent's links.

    Gives the same answer as :class:`ProbingEnumerator` but touches the
    container once per parent instead of once per suffix.
    """

    def count(self, container: Container, parent: Handle, base: str) -> int:
        prefix = base + SUFFIX_SEPARATOR
        suffixes = set()
        for name in container.list_links(parent):
            tail = name[len(prefix):] if name.startswith(prefix) else ""
            if tail.isascii() and tail.isdigit() and not tail.startswith("0"):
                suffixes.add(int(tail))
        n = 0
        while n + 1 in suffixes:
            n += 1
        return n


DEFAULT_ENUMERATOR = ProbingEnumerator()
