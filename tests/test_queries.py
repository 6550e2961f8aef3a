import pytest

from conftest import make_book, make_genre
from pothpath.errors import BackendError, ValidationError
from pothpath.queries import BookQueryBuilder, FilterState, LibraryListing, ResultPage


@pytest.fixture()
def builder(ctx, backend):
    return BookQueryBuilder(backend, page_size=3)


def titles(rows):
    return [r.title for r in rows]


def test_public_listing_only_shows_approved_public_books(builder):
    make_book("Visible", status="approved")
    make_book("Hidden", status="approved", is_public=False)
    make_book("Waiting", status="pending")
    make_book("Refused", status="rejected")
    make_book("Shelved", status="archived")

    page = builder.fetch_page(FilterState.public())

    assert titles(page.rows) == ["Visible"]
    assert page.total_count == 1
    assert page.has_more is False


def test_search_matches_title_author_or_description_case_insensitively(builder):
    make_book("Data Structures", author="Knuth", minutes=1)
    make_book("Advanced Data Design", author="Kleppmann", minutes=2)
    make_book("Poetry Collection", author="Keats", description="Verses", minutes=3)
    make_book("Cooking Basics", author="Child", minutes=4)

    rows = builder.fetch_all(FilterState.public(search_text="data"))
    assert sorted(titles(rows)) == ["Advanced Data Design", "Data Structures"]

    assert titles(builder.fetch_all(FilterState.public(search_text="  KEATS "))) == ["Poetry Collection"]
    assert titles(builder.fetch_all(FilterState.public(search_text="verses"))) == ["Poetry Collection"]


def test_search_treats_wildcards_literally(builder):
    make_book("100% Python")
    make_book("1000 Pythons")
    make_book("snake_case guide")
    make_book("snakecase guide")

    assert titles(builder.fetch_all(FilterState.public(search_text="100%"))) == ["100% Python"]
    assert titles(builder.fetch_all(FilterState.public(search_text="snake_"))) == ["snake_case guide"]


def test_genre_filter(builder):
    science = make_genre("Science")
    history = make_genre("History", sort_order=1)
    make_book("Cosmos", genre=science)
    make_book("SPQR", genre=history)

    rows = builder.fetch_all(FilterState.public(genre_id=science.id))
    assert titles(rows) == ["Cosmos"]
    assert rows[0].genre_name == "Science"


@pytest.mark.parametrize(
    "sort_key, expected",
    [
        ("newest", ["Charlie", "Bravo", "Alpha"]),
        ("oldest", ["Alpha", "Bravo", "Charlie"]),
        ("az", ["Alpha", "Bravo", "Charlie"]),
        ("popular", ["Bravo", "Charlie", "Alpha"]),
    ],
)
def test_sort_orders(builder, sort_key, expected):
    make_book("Alpha", minutes=1, download_count=1)
    make_book("Bravo", minutes=2, download_count=9)
    make_book("Charlie", minutes=3, download_count=1)

    assert titles(builder.fetch_all(FilterState.public(sort_key=sort_key))) == expected


def test_unknown_sort_key_is_rejected(builder):
    with pytest.raises(ValidationError) as excinfo:
        builder.fetch_page(FilterState.public(sort_key="rating"))
    assert "sort" in excinfo.value.errors


def test_public_state_cannot_widen_status(builder):
    with pytest.raises(ValidationError):
        builder.build(FilterState(status_filter="pending", public_only=True))


def test_filter_is_idempotent(builder):
    for i in range(5):
        make_book(f"Book {i}", minutes=i)
    state = FilterState.public(search_text="book", sort_key="az")

    first = builder.fetch_page(state)
    second = builder.fetch_page(state)

    assert [r.id for r in first.rows] == [r.id for r in second.rows]
    assert first.total_count == second.total_count


def test_pagination_covers_every_row_exactly_once(builder):
    for i in range(7):
        # identical timestamps exercise the id tie-breaker
        make_book(f"Book {i}", minutes=i // 3)

    seen = []
    offset = 0
    pages = 0
    while True:
        page = builder.fetch_page(FilterState.public(), offset=offset)
        seen.extend(r.id for r in page.rows)
        pages += 1
        if not page.has_more:
            break
        offset += len(page.rows)

    assert pages == 3
    assert len(seen) == len(set(seen)) == 7
    assert builder.fetch_page(FilterState.public()).total_count == 7


def test_has_more_without_count_uses_page_length(builder):
    for i in range(3):
        make_book(f"Book {i}", minutes=i)

    page = builder.fetch_page(FilterState.public(), with_count=False)

    assert page.total_count is None
    assert page.has_more is True


def test_backend_failure_yields_empty_page(builder, backend, monkeypatch):
    make_book("Anything")

    def broken(query):
        raise BackendError("Query failed")

    monkeypatch.setattr(backend, "fetch", broken)
    page = builder.fetch_page(FilterState.public())

    assert page.rows == []
    assert page.has_more is False


def test_listing_appends_pages_and_resets_on_filter_change(builder):
    for i in range(5):
        make_book(f"Book {i}", minutes=i)
    make_book("Lonely Planet", minutes=10)

    listing = LibraryListing(builder, FilterState.public(sort_key="oldest"))
    listing.refresh()
    assert titles(listing.rows) == ["Book 0", "Book 1", "Book 2"]
    assert listing.has_more

    listing.load_more()
    assert titles(listing.rows) == ["Book 0", "Book 1", "Book 2", "Book 3", "Book 4", "Lonely Planet"]
    assert listing.has_more is False
    listing.load_more()
    assert len(listing.rows) == 6

    listing.apply_filters(search_text="planet")
    assert titles(listing.rows) == ["Lonely Planet"]
    assert listing.total_count == 1


def test_stale_page_is_discarded_after_reset(builder):
    make_book("Old result")
    listing = LibraryListing(builder, FilterState.public())

    stale = listing.begin(reset=True)
    fresh = listing.begin(reset=True)

    assert listing.complete(stale, ResultPage(rows=builder.fetch_all(FilterState.public()), total_count=1)) is False
    assert listing.rows == []

    assert listing.complete(fresh, ResultPage(rows=[], total_count=0)) is True
    assert listing.rows == []
    assert listing.total_count == 0


def test_listing_rejects_invalid_filter_change(builder):
    listing = LibraryListing(builder, FilterState.public())
    with pytest.raises(ValidationError):
        listing.apply_filters(sort_key="bogus")
    assert listing.state.sort_key == "newest"
