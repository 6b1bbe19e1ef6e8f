"""
Helpers for turning Realtime Database snapshots into API records.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp ('Z' suffix allowed); None when unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def with_id(record_id: str, record: Optional[Dict]) -> Optional[Dict]:
    if record is None:
        return None
    return {'id': record_id, **record}


def snapshot_to_list(snapshot: Optional[Dict]) -> List[Dict]:
    """
    {key: record} snapshot -> list of records carrying their key as 'id'.

    Non-dict children (stray scalars) are skipped.
    """
    if not snapshot:
        return []
    return [with_id(key, value) for key, value in snapshot.items() if isinstance(value, dict)]


def sort_newest(records: Iterable[Dict], field: str = 'created_at') -> List[Dict]:
    return sorted(records, key=lambda r: r.get(field) or '', reverse=True)


def count_by(records: Iterable[Dict], field: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for record in records:
        value = record.get(field) or 'unknown'
        counts[value] = counts.get(value, 0) + 1
    return counts


def display_name(profile: Optional[Dict], default: str = 'Unknown') -> str:
    if not profile:
        return default
    return profile.get('name') or profile.get('email') or default


def as_bool(value) -> bool:
    """Form and JSON flags: 'true', '1', 'yes' and 'on' are true"""
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)
