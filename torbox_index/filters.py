"""Filter compilation, matching, ordering and truncation of listings.

A filter is compiled once per request into an immutable
:class:`CompiledFilter` and then applied to any number of entries. Two
variants share that contract:

* :class:`PatternFilter` searches a regular expression in each file's full
  name (and in container names),
* :class:`TermFilter` keeps files whose lower-cased full name ends with one of
  a list of extension-like terms.

Ordering is a total order: the requested column first, then the entry id,
then the source. Descending order reverses the whole key.
"""

from __future__ import annotations

import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, Iterable, TypeVar

import regex as regex_mod

from torbox_index.errors import InvalidFilter
from torbox_index.models import ContainerEntry, FileEntry

MAX_FILTER_LEN = 256
MAX_FILTER_TERMS = 32
MAX_TERM_LEN = 64
MATCH_TIMEOUT = 0.25

PATTERN_MATCH_ALL = frozenset({".+", ".*", "^.*$"})
TERM_MATCH_ALL = frozenset({"*", "*.*", ".*", ".+", "^.*$"})

ALLOWED_REGEX_FLAGS = frozenset("dgimsuvy")
_REGEX_FLAG_BITS = {"i": regex_mod.IGNORECASE, "m": regex_mod.MULTILINE, "s": regex_mod.DOTALL}
_TERM_SEPARATORS = re.compile(r"[,\s]+")

T = TypeVar("T")


class FilterMode(str, Enum):
    PATTERN = "pattern"
    TERMS = "terms"


class SortColumn(str, Enum):
    NAME = "N"
    SIZE = "S"
    DESCRIPTION = "D"


class SortOrder(str, Enum):
    ASC = "A"
    DESC = "D"


@dataclass(frozen=True)
class FilterResult(Generic[T]):
    items: list[T]
    total_matched: int


# ============================================================================
# Compiled filters
# ============================================================================


@dataclass(frozen=True)
class CompiledFilter(ABC):
    raw: str
    match_all: bool

    # Whether a container's own name can satisfy the filter.
    match_container_name = False

    @abstractmethod
    def matches_text(self, text: str) -> bool:
        """Whether ``text`` satisfies the filter, ignoring ``match_all``."""

    def matches_file(self, file: FileEntry) -> bool:
        return self.match_all or self.matches_text(file.full_name)

    def matches_container(self, container: ContainerEntry) -> bool:
        if self.match_all:
            return True
        if self.match_container_name and self.matches_text(container.container_name):
            return True
        return any(self.matches_text(file.full_name) for file in container.files)


@dataclass(frozen=True)
class PatternFilter(CompiledFilter):
    """Regular-expression filter.

    Every search runs with a time limit; a pattern that exceeds it on any
    single name is rejected with :class:`InvalidFilter`.
    """

    flags: int = 0
    timeout: float = MATCH_TIMEOUT
    regex: Any = field(default=None, compare=False)

    match_container_name = True

    def matches_text(self, text: str) -> bool:
        try:
            return self.regex.search(text, timeout=self.timeout) is not None
        except TimeoutError as exc:
            raise InvalidFilter(f"Pattern took too long to evaluate (limit {self.timeout}s)") from exc


@dataclass(frozen=True)
class TermFilter(CompiledFilter):
    terms: tuple[str, ...] = ()

    def matches_text(self, text: str) -> bool:
        return text.lower().endswith(self.terms)


def _regex_flags(flags: str) -> int:
    bits = 0
    for flag in flags:
        if flag not in ALLOWED_REGEX_FLAGS:
            raise InvalidFilter(f"Invalid regex flag: {flag}")
        bits |= _REGEX_FLAG_BITS.get(flag, 0)
    return bits


def _compile_pattern(pattern: str, flags: str, timeout: float) -> PatternFilter:
    normalized = pattern.strip() or ".*"
    bits = _regex_flags(flags)
    try:
        compiled = regex_mod.compile(normalized, bits)
    except regex_mod.error as exc:
        raise InvalidFilter(f"Invalid pattern: {exc}") from exc
    return PatternFilter(
        raw=pattern,
        match_all=normalized in PATTERN_MATCH_ALL,
        flags=bits,
        timeout=timeout,
        regex=compiled,
    )


def normalize_term(term: str) -> str:
    """Turn a user-supplied term into a lower-cased extension suffix.

    Examples:
        >>> normalize_term("MKV")
        '.mkv'
        >>> normalize_term("*.Mp4")
        '.mp4'
        >>> normalize_term(".srt")
        '.srt'
    """
    term = term.lower()
    if term.startswith("*."):
        term = term[1:]
    if not term.startswith("."):
        term = f".{term}"
    return term


def _compile_terms(pattern: str) -> TermFilter:
    stripped = pattern.strip()
    if stripped in TERM_MATCH_ALL:
        return TermFilter(raw=pattern, match_all=True)

    raw_terms = [term for term in _TERM_SEPARATORS.split(stripped) if term]
    if len(raw_terms) > MAX_FILTER_TERMS:
        raise InvalidFilter(f"Too many filter terms (max {MAX_FILTER_TERMS})")
    for term in raw_terms:
        if len(term) > MAX_TERM_LEN:
            raise InvalidFilter(f"Filter term too long (max {MAX_TERM_LEN} chars)")

    terms = tuple(dict.fromkeys(normalize_term(term) for term in raw_terms))
    return TermFilter(raw=pattern, match_all=not terms, terms=terms)


def compile_filter(
    pattern: str,
    flags: str = "i",
    mode: FilterMode = FilterMode.PATTERN,
    timeout: float = MATCH_TIMEOUT,
) -> CompiledFilter:
    """Compile a user filter once so it can be applied to many entries.

    ``timeout`` bounds each regular-expression search in pattern mode.

    Raises:
        InvalidFilter: if the pattern is too long, has too many or too long
            terms, uses an unknown regex flag or is not a valid expression.
            Pattern filters also raise it while matching when a search
            exceeds ``timeout``.
    """
    if len(pattern) > MAX_FILTER_LEN:
        raise InvalidFilter(f"Filter too long (max {MAX_FILTER_LEN} chars)")
    if FilterMode(mode) is FilterMode.TERMS:
        return _compile_terms(pattern)
    return _compile_pattern(pattern, flags, timeout)


# ============================================================================
# Ordering
# ============================================================================


def collation_key(name: str) -> str:
    """Case- and accent-insensitive sort key for display names."""
    decomposed = unicodedata.normalize("NFKD", name)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()


def _file_key(column: SortColumn) -> Callable[[FileEntry], tuple]:
    if column is SortColumn.SIZE:
        return lambda f: (f.size, f.file_id, f.source.value)
    return lambda f: (collation_key(f.display_name), f.file_id, f.source.value)


def _container_key(column: SortColumn) -> Callable[[ContainerEntry], tuple]:
    if column is SortColumn.SIZE:
        return lambda c: (c.total_size, c.container_id, c.source.value)
    return lambda c: (collation_key(c.container_name), c.container_id, c.source.value)


def _select(
    entries: Iterable[T],
    predicate: Callable[[T], bool],
    key: Callable[[T], tuple],
    limit: int,
    order: SortOrder,
) -> FilterResult[T]:
    matched = sorted(
        (entry for entry in entries if predicate(entry)),
        key=key,
        reverse=SortOrder(order) is SortOrder.DESC,
    )
    return FilterResult(items=matched[: max(limit, 0)], total_matched=len(matched))


def filter_and_sort_files(
    files: Iterable[FileEntry],
    compiled: CompiledFilter,
    limit: int,
    column: SortColumn = SortColumn.NAME,
    order: SortOrder = SortOrder.ASC,
) -> FilterResult[FileEntry]:
    return _select(files, compiled.matches_file, _file_key(SortColumn(column)), limit, order)


def filter_and_sort_containers(
    containers: Iterable[ContainerEntry],
    compiled: CompiledFilter,
    limit: int,
    column: SortColumn = SortColumn.NAME,
    order: SortOrder = SortOrder.ASC,
) -> FilterResult[ContainerEntry]:
    return _select(containers, compiled.matches_container, _container_key(SortColumn(column)), limit, order)
