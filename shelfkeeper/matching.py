"""Title and author normalization used to recognise the same work under different ids."""
import re
from typing import List, Iterable

_AUTHOR_SUFFIX = re.compile(r"\s+(jr\.?|sr\.?|ii|iii|iv)$", re.IGNORECASE)
_LEADING_ARTICLE = re.compile(r"^(the|a|an)\s+", re.IGNORECASE)
_TITLE_SEPARATORS = re.compile(r"[:\-|–—]")
_WHITESPACE = re.compile(r"\s+")


def normalize_author_name(name: str) -> str:
    """
    Normalize an author name for comparison.

    Lower-cases, collapses whitespace and drops a trailing Jr./Sr./II/III/IV.
    """
    name = _WHITESPACE.sub(" ", name.strip().lower())
    return _AUTHOR_SUFFIX.sub("", name).strip()


def normalize_title(title: str) -> str:
    """
    Normalize a title for substring matching.

    "The Lord of the Rings: The Two Towers" -> "lord of the rings the two towers"
    """
    title = _LEADING_ARTICLE.sub("", title.strip().lower())
    title = _TITLE_SEPARATORS.sub(" ", title)
    return _WHITESPACE.sub(" ", title).strip()


def _same_author(a: str, b: str) -> bool:
    return bool(a) and bool(b) and (a == b or a in b or b in a)


def has_common_authors(authors1: Iterable[str], authors2: Iterable[str]) -> bool:
    """True if at least one author appears in both lists after normalization."""
    normalized1 = [normalize_author_name(a) for a in authors1 or []]
    normalized2 = [normalize_author_name(a) for a in authors2 or []]
    if not normalized1 or not normalized2:
        return False

    return any(_same_author(a1, a2) for a1 in normalized1 for a2 in normalized2)


def titles_overlap(title1: str, title2: str) -> bool:
    """Normalized titles match when either contains the other."""
    n1 = normalize_title(title1)
    n2 = normalize_title(title2)
    if not n1 or not n2:
        return False
    return n1 in n2 or n2 in n1


def merge_authors(existing: List[str], new_authors: List[str]) -> List[str]:
    """
    Append authors not already represented, never removing any.

    An author counts as represented when its normalized form equals, contains
    or is contained in one already present.
    """
    merged = list(existing)
    normalized_existing = [normalize_author_name(a) for a in existing]

    for author in new_authors:
        normalized_new = normalize_author_name(author)
        if not normalized_new:
            continue
        if any(_same_author(n, normalized_new) for n in normalized_existing):
            continue
        merged.append(author)
        normalized_existing.append(normalized_new)

    return merged


def _genre_key(genre: str) -> str:
    return _WHITESPACE.sub(" ", genre.strip().lower())


def merge_genres(existing: List[str], new_genres: List[str]) -> List[str]:
    """Union of genre lists, compared case- and whitespace-insensitively."""
    merged = list(existing)
    seen = {_genre_key(g) for g in existing}

    for genre in new_genres:
        key = _genre_key(genre)
        if key and key not in seen:
            merged.append(genre)
            seen.add(key)

    return merged
