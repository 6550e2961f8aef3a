from collections import Counter

from .models import BOOK_STATUSES

TOP_GENRES = 10


def _month_key(when):
    return f"{when.year:04d}-{when.month:02d}"


def summarize(records):
    records = list(records)
    total = len(records)

    by_status = {status: 0 for status in BOOK_STATUSES}
    for r in records:
        by_status[r.status] = by_status.get(r.status, 0) + 1

    genre_counts = Counter(r.genre_name for r in records if r.status == "approved")
    by_genre = [
        {"name": name, "count": count}
        for name, count in sorted(genre_counts.items(), key=lambda item: (-item[1], item[0]))
    ]

    public = sum(1 for r in records if r.is_public)

    monthly = {}
    for r in records:
        if r.upload_at is None:
            continue
        bucket = monthly.setdefault(_month_key(r.upload_at), {"total": 0, "approved": 0, "pending": 0})
        bucket["total"] += 1
        if r.status in ("approved", "pending"):
            bucket[r.status] += 1

    return {
        "total": total,
        "by_status": by_status,
        "by_genre": by_genre,
        "top_genres": by_genre[:TOP_GENRES],
        "visibility": {"public": public, "private": total - public},
        "total_downloads": sum(r.download_count for r in records),
        "approval_rate": round(by_status["approved"] / total, 4) if total else 0.0,
        "monthly_uploads": [{"month": month, **counts} for month, counts in sorted(monthly.items())],
    }
