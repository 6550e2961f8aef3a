from datetime import datetime

from pothpath.analytics import summarize
from pothpath.records import BookRecord, GenreRecord

SCIENCE = GenreRecord(id="g1", name="Science")
HISTORY = GenreRecord(id="g2", name="History")
POETRY = GenreRecord(id="g3", name="Poetry")


def book(status, genre=None, is_public=True, downloads=0, when=datetime(2024, 1, 15)):
    return BookRecord(
        id=f"{status}-{genre.name if genre else 'none'}-{when.isoformat()}",
        title="t",
        author="a",
        file_url="/f.pdf",
        status=status,
        genre=genre,
        is_public=is_public,
        download_count=downloads,
        upload_at=when,
    )


def test_empty_input():
    summary = summarize([])

    assert summary["total"] == 0
    assert summary["by_status"] == {"pending": 0, "approved": 0, "rejected": 0, "archived": 0}
    assert summary["by_genre"] == []
    assert summary["approval_rate"] == 0.0
    assert summary["monthly_uploads"] == []


def test_counts_and_genre_buckets():
    records = [
        book("approved", SCIENCE, downloads=5, when=datetime(2024, 1, 2)),
        book("approved", SCIENCE, downloads=1, when=datetime(2024, 1, 3)),
        book("approved", HISTORY, is_public=False, when=datetime(2024, 2, 1)),
        book("approved", None, when=datetime(2024, 2, 2)),
        book("pending", POETRY, downloads=2, when=datetime(2024, 2, 3)),
        book("rejected", HISTORY, when=datetime(2023, 12, 31)),
    ]

    summary = summarize(records)

    assert summary["total"] == 6
    assert summary["by_status"] == {"pending": 1, "approved": 4, "rejected": 1, "archived": 0}
    assert summary["by_genre"] == [
        {"name": "Science", "count": 2},
        {"name": "History", "count": 1},
        {"name": "Uncategorized", "count": 1},
    ]
    assert summary["visibility"] == {"public": 5, "private": 1}
    assert summary["total_downloads"] == 8
    assert summary["approval_rate"] == 0.6667
    assert summary["monthly_uploads"] == [
        {"month": "2023-12", "total": 1, "approved": 0, "pending": 0},
        {"month": "2024-01", "total": 2, "approved": 2, "pending": 0},
        {"month": "2024-02", "total": 3, "approved": 2, "pending": 1},
    ]


def test_top_genres_is_capped_at_ten():
    genres = [GenreRecord(id=str(i), name=f"Genre {i:02d}") for i in range(12)]
    records = [book("approved", g, when=datetime(2024, 3, i + 1)) for i, g in enumerate(genres)]

    summary = summarize(records)

    assert len(summary["by_genre"]) == 12
    assert [g["name"] for g in summary["top_genres"]] == [f"Genre {i:02d}" for i in range(10)]
