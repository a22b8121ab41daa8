"""Webhook metrics — aggregate health report over asaas_webhook_events.

Simple in-process aggregation (counts, average and p50/p95 processing
time, last-24h outcomes) so it works on any store without statistical
extensions.
"""

from datetime import datetime, timedelta, timezone

from payhooks.services.store import WEBHOOK_EVENTS


def _as_utc(value):
    """Normalize a processed_at value (datetime or ISO string) to aware UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if value.tzinfo is None:
        # SQLite hands back naive datetimes; they were written as UTC
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _percentile(sorted_times, q):
    if not sorted_times:
        return 0
    index = min(len(sorted_times) - 1, int(len(sorted_times) * q))
    return sorted_times[index]


def get_webhook_metrics(store, now=None):
    """Return a dict of webhook processing metrics.

    Rows with a status other than processed/failed count as pending.
    Only positive processing times enter the timing figures.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=24)
    rows = store.select_many(WEBHOOK_EVENTS)

    counts = {"processed": 0, "failed": 0, "pending": 0}
    last24h = {"processed": 0, "failed": 0}
    times = []

    for row in rows:
        status = str(row.get("status") or "").lower()
        if status not in ("processed", "failed"):
            status = "pending"
        counts[status] += 1

        elapsed = row.get("processing_time_ms")
        if isinstance(elapsed, int) and elapsed > 0:
            times.append(elapsed)

        processed_at = _as_utc(row.get("processed_at"))
        if processed_at and processed_at >= cutoff and status in last24h:
            last24h[status] += 1

    times.sort()
    avg = round(sum(times) / len(times)) if times else 0

    return {
        "total": len(rows),
        "processed": counts["processed"],
        "failed": counts["failed"],
        "pending": counts["pending"],
        "avg_processing_ms": avg,
        "p50_processing_ms": _percentile(times, 0.5),
        "p95_processing_ms": _percentile(times, 0.95),
        "last24h": last24h,
        "generated_at": now.isoformat(),
    }
