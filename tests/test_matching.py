"""Tests for title and author matching helpers."""
from shelfkeeper.matching import (
    has_common_authors,
    merge_authors,
    merge_genres,
    normalize_author_name,
    normalize_title,
    titles_overlap,
)


def test_normalize_author_name():
    """Test case, whitespace and suffix handling."""
    assert normalize_author_name("  Martin Luther   King Jr. ") == "martin luther king"
    assert normalize_author_name("Henry Ford II") == "henry ford"
    assert normalize_author_name("FRANK HERBERT") == "frank herbert"


def test_normalize_title():
    """Test article stripping and separator collapsing."""
    assert normalize_title("The Lord of the Rings: The Two Towers") == "lord of the rings the two towers"
    assert normalize_title("A Game of Thrones | Book One") == "game of thrones book one"
    assert normalize_title("Dune — Deluxe Edition") == "dune deluxe edition"
    assert normalize_title("Anathem") == "anathem"


def test_has_common_authors_substring_tolerant():
    assert has_common_authors(["Frank Herbert"], ["frank  herbert"])
    assert has_common_authors(["J. R. R. Tolkien", "Christopher Tolkien"], ["Tolkien"])
    assert has_common_authors(["Martin Luther King Jr."], ["Martin Luther King"])


def test_has_common_authors_no_overlap():
    assert not has_common_authors(["Frank Herbert"], ["Brian Herbert Smith"])
    assert not has_common_authors([], ["Frank Herbert"])
    assert not has_common_authors(["Frank Herbert"], [])


def test_titles_overlap():
    assert titles_overlap("Dune", "Dune: Deluxe Edition")
    assert titles_overlap("The Hobbit", "hobbit")
    assert not titles_overlap("Dune", "Children of Arrakis")
    assert not titles_overlap("", "Dune")


def test_merge_authors_appends_only_new():
    """Test that represented authors are not duplicated."""
    merged = merge_authors(["Frank Herbert"], ["frank herbert", "Brian Herbert", "Kevin J. Anderson"])

    assert merged == ["Frank Herbert", "Brian Herbert", "Kevin J. Anderson"]


def test_merge_authors_never_removes():
    merged = merge_authors(["Neil Gaiman", "Terry Pratchett"], ["Terry Pratchett"])
    assert merged == ["Neil Gaiman", "Terry Pratchett"]


def test_merge_authors_substring_counts_as_present():
    merged = merge_authors(["Tolkien"], ["J. R. R. Tolkien"])
    assert merged == ["Tolkien"]


def test_merge_genres():
    """Test case and whitespace insensitive union."""
    merged = merge_genres(["Science Fiction"], ["science  fiction", "Classics", "classics ", "Space Opera"])

    assert merged == ["Science Fiction", "Classics", "Space Opera"]
