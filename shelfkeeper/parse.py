"""Parse and normalize Open Library work records."""
from typing import Dict, Any, List, Optional
from shelfkeeper.models import CandidateBook

COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-L.jpg"


def work_id_from_key(key: Optional[str]) -> Optional[str]:
    """
    Strip the path prefix from an Open Library key.

    "/works/OL45804W" -> "OL45804W"
    """
    if not key:
        return None
    return key.rstrip("/").rsplit("/", 1)[-1] or None


def _text(value: Any) -> Optional[str]:
    # Descriptions come either as a plain string or as {"type": ..., "value": ...}
    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _string_list(values: Any) -> List[str]:
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, list):
        return []
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def _cover_id(raw: Dict[str, Any]) -> Optional[int]:
    # Open Library uses -1 as a "no cover" placeholder
    for cover in raw.get("covers") or []:
        if isinstance(cover, int) and not isinstance(cover, bool) and cover > 0:
            return cover
    return None


def normalize_work(
    raw: Dict[str, Any],
    hints: Optional[Dict[str, Any]] = None,
    external_id: Optional[str] = None
) -> CandidateBook:
    """
    Map an Open Library work document to canonical book attributes.

    Work documents carry author keys rather than names, so author names
    come from the hints. Any attribute the record lacks is filled from the
    hints (title, authors, subtitle, description, cover_image, cover_id,
    genres, release_date).

    Args:
        raw: Decoded /works/{id}.json document
        hints: Caller-supplied attributes
        external_id: The id that was queried, used when the record has no key

    Returns:
        CandidateBook
    """
    hints = hints or {}

    book_id = work_id_from_key(raw.get("key")) or external_id
    if not book_id:
        raise ValueError("work record has no key and no external id was given")

    title = _text(raw.get("title")) or _text(hints.get("title")) or "Unknown Title"

    authors = _string_list(hints.get("authors"))

    cover_id = _cover_id(raw)
    if cover_id is not None:
        cover_image = COVER_URL.format(cover_id=cover_id)
    else:
        cover_id = hints.get("cover_id")
        cover_image = _text(hints.get("cover_image"))

    genres = _string_list(raw.get("subjects")) or _string_list(hints.get("genres"))

    return CandidateBook(
        external_id=book_id,
        title=title,
        authors=authors,
        subtitle=_text(raw.get("subtitle")) or _text(hints.get("subtitle")),
        genres=genres,
        description=_text(raw.get("description")) or _text(hints.get("description")),
        cover_image=cover_image,
        cover_id=cover_id,
        release_date=_text(raw.get("first_publish_date")) or _text(hints.get("release_date"))
    )


def candidate_from_hints(external_id: str, hints: Dict[str, Any]) -> CandidateBook:
    """Build a candidate from caller hints alone, for records the catalog lacks."""
    return normalize_work({}, hints, external_id=external_id)
