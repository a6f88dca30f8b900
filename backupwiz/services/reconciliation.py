"""
Reconciliation of 3CX live chat tables against the history views.

The two representations diverge: a row can be present in one and missing
from the other, and when present in both the history view usually carries
more resolved data (sender display names, provider type, participants).

Rules:
    * The output is the union of both identifier sets.
    * For identifiers present in both, every field the history view supplies
      (non-null) wins; the rest fall back to the live row.
    * Live-only rows are enriched best-effort from the membership table.
    * Output is ordered by (timestamp, identifier) ascending.

Everything in this module is pure; callers fetch the rows.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from backupwiz.core.enums import ChannelType, Provenance
from backupwiz.core.utils import coerce_datetime

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class ReconciledRecord:
    key: str
    timestamp: Optional[datetime]
    data: Dict[str, Any]
    provenance: Provenance

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.timestamp or _EPOCH, self.key)


@dataclass
class ReconciliationResult:
    records: List[ReconciledRecord] = field(default_factory=list)
    live_only: int = 0
    history_only: int = 0
    both: int = 0
    # Records left for the next page because a full page cut them off
    deferred: int = 0

    @property
    def total(self) -> int:
        return len(self.records)

    @property
    def last_position(self) -> Optional[Tuple[datetime, str]]:
        return self.records[-1].sort_key if self.records else None

    @property
    def max_timestamp(self) -> Optional[datetime]:
        stamps = [r.timestamp for r in self.records if r.timestamp is not None]
        return max(stamps) if stamps else None

    def summary(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "live_only": self.live_only,
            "history_only": self.history_only,
            "both": self.both,
            "deferred": self.deferred,
        }


def merge_fields(live: Mapping[str, Any], history: Mapping[str, Any]) -> Dict[str, Any]:
    """History wins for every field it supplies; fields it lacks come from live."""
    merged = dict(live)
    for name, value in history.items():
        if value is not None:
            merged[name] = value
        elif name not in merged:
            merged[name] = None
    return merged


def three_way_merge(
    live: Mapping[str, Mapping[str, Any]],
    history: Mapping[str, Mapping[str, Any]],
) -> Dict[str, Tuple[Dict[str, Any], Provenance]]:
    """Merge two identifier-keyed maps, tagging each result with its provenance."""
    merged: Dict[str, Tuple[Dict[str, Any], Provenance]] = {}
    for key in set(live) | set(history):
        in_live = key in live
        in_history = key in history
        if in_live and in_history:
            merged[key] = (merge_fields(live[key], history[key]), Provenance.BOTH)
        elif in_history:
            merged[key] = (dict(history[key]), Provenance.HISTORY_ONLY)
        else:
            merged[key] = (dict(live[key]), Provenance.LIVE_ONLY)
    return merged


def divergence(live_ids: Iterable[str], history_ids: Iterable[str]) -> Set[str]:
    """Identifiers present in exactly one of the two representations."""
    return set(live_ids) ^ set(history_ids)


def _page_boundary(rows: List[Mapping[str, Any]], key_field: str, ts_field: str) -> Tuple[datetime, str]:
    return max(
        (coerce_datetime(row.get(ts_field)) or _EPOCH, str(row[key_field]))
        for row in rows
    )


def reconcile(
    live_rows: Iterable[Mapping[str, Any]],
    history_rows: Iterable[Mapping[str, Any]],
    *,
    key_field: str,
    ts_field: str,
    enrich_live: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    live_page_full: bool = False,
    history_page_full: bool = False,
) -> ReconciliationResult:
    """Produce the ordered canonical batch for one page of live and history rows.

    When either page came back full, rows beyond the smaller of the full
    pages' last (timestamp, key) positions are held back: the other side may
    still have unseen rows before them.
    """
    live_list = list(live_rows)
    history_list = list(history_rows)
    live_map = {str(row[key_field]): row for row in live_list}
    history_map = {str(row[key_field]): row for row in history_list}

    boundaries = []
    if live_page_full and live_list:
        boundaries.append(_page_boundary(live_list, key_field, ts_field))
    if history_page_full and history_list:
        boundaries.append(_page_boundary(history_list, key_field, ts_field))
    boundary = min(boundaries) if boundaries else None

    result = ReconciliationResult()
    for key, (data, provenance) in three_way_merge(live_map, history_map).items():
        record = ReconciledRecord(
            key=key,
            timestamp=coerce_datetime(data.get(ts_field)),
            data=data,
            provenance=provenance,
        )
        if boundary is not None and record.sort_key > boundary:
            result.deferred += 1
            continue
        if provenance is Provenance.LIVE_ONLY and enrich_live is not None:
            record.data = enrich_live(record.data)
        result.records.append(record)
        if provenance is Provenance.BOTH:
            result.both += 1
        elif provenance is Provenance.HISTORY_ONLY:
            result.history_only += 1
        else:
            result.live_only += 1

    result.records.sort(key=lambda r: r.sort_key)
    return result


# ----------------------------------------------------------------------
# Chat record shapes
# ----------------------------------------------------------------------
def normalize_live_message(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a ``chat_message`` row onto the shared message shape.

    Live rows know the sending party but not its name or number; those stay
    unset so the history view (or membership enrichment) can supply them.
    """
    return {
        "message_id": str(row["message_id"]),
        "conversation_id": str(row["conversation_id"]) if row.get("conversation_id") is not None else None,
        "time_sent": row.get("time_sent"),
        "message": row.get("message"),
        "is_external": row.get("is_external"),
        "queue_number": row.get("queue_number"),
        "sender_party": row.get("sender_party"),
        "sender_extension": None,
        "sender_name": None,
        "sender_phone": None,
        "internal_file_name": row.get("internal_file_name"),
        "public_file_name": row.get("public_file_name"),
    }


def normalize_history_message(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "message_id": str(row["message_id"]),
        "conversation_id": str(row["conversation_id"]) if row.get("conversation_id") is not None else None,
        "time_sent": row.get("time_sent"),
        "message": row.get("message"),
        "is_external": row.get("is_external"),
        "queue_number": row.get("queue_number"),
        "sender_extension": row.get("sender_participant_no"),
        "sender_name": row.get("sender_participant_name"),
        "sender_phone": row.get("sender_participant_phone"),
    }


def normalize_live_conversation(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "conversation_id": str(row["conversation_id"]),
        "chat_name": row.get("chat_name"),
        "is_external": row.get("is_external"),
        "queue_number": row.get("queue_number"),
        "message_count": int(row.get("message_count") or 0),
        "first_message_at": row.get("first_message_at"),
        "last_message_at": row.get("last_message_at"),
        "provider_type": None,
        "participants": [],
    }


def normalize_history_conversation(row: Mapping[str, Any]) -> Dict[str, Any]:
    count = row.get("message_count")
    return {
        "conversation_id": str(row["conversation_id"]),
        "chat_name": row.get("chat_name"),
        "is_external": row.get("is_external"),
        "message_count": int(count) if count is not None else None,
        "first_message_at": row.get("first_message_at"),
        "last_message_at": row.get("last_message_at"),
        "provider_type": row.get("provider_type"),
        "participants": parse_participants(row.get("participants_grp_array")) or None,
    }


def parse_participants(raw: Any) -> List[Dict[str, str]]:
    """Parse ``participants_grp_array``: a JSON list, a Postgres array, or ``ext:name,ext:name``."""
    if not raw:
        return []
    items: List[Any]
    if isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        text = str(raw).strip()
        if text.startswith("["):
            try:
                items = json.loads(text)
            except ValueError:
                logger.warning(f"Failed to parse participants array: {text[:80]}")
                return []
        else:
            items = [part for part in text.strip("{}").split(",") if part.strip()]

    participants = []
    for item in items:
        if isinstance(item, Mapping):
            extension = str(item.get("extension") or item.get("number") or "").strip()
            name = str(item.get("name") or extension).strip()
        else:
            extension, _, name = str(item).strip().strip('"').partition(":")
            extension = extension.strip()
            name = name.strip() or extension
        if extension:
            participants.append({"extension": extension, "name": name})
    return participants


class MembershipIndex:
    """Lookup over ``chat_participant`` rows used to enrich live-only records."""

    def __init__(self, members: Iterable[Mapping[str, Any]]):
        self._by_party: Dict[Tuple[str, str], Mapping[str, Any]] = {}
        self._by_conversation: Dict[str, List[Dict[str, str]]] = {}
        for member in members:
            conversation_id = str(member.get("conversation_id"))
            party = member.get("party")
            if party is not None:
                self._by_party[(conversation_id, str(party))] = member
            extension = member.get("extension_number")
            if extension:
                self._by_conversation.setdefault(conversation_id, []).append({
                    "extension": str(extension),
                    "name": member.get("display_name") or str(extension),
                })

    def participants(self, conversation_id: str) -> List[Dict[str, str]]:
        return list(self._by_conversation.get(str(conversation_id), []))

    def enrich_message(self, data: Dict[str, Any]) -> Dict[str, Any]:
        party = data.get("sender_party")
        member = self._by_party.get((str(data.get("conversation_id")), str(party))) if party is not None else None
        if member is None:
            return data
        enriched = dict(data)
        if not enriched.get("sender_extension"):
            enriched["sender_extension"] = member.get("extension_number")
        if not enriched.get("sender_name"):
            enriched["sender_name"] = member.get("display_name")
        return enriched

    def enrich_conversation(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if data.get("participants"):
            return data
        enriched = dict(data)
        enriched["participants"] = self.participants(data["conversation_id"])
        return enriched


# ----------------------------------------------------------------------
# Message classification
# ----------------------------------------------------------------------
_IMAGE_MARKERS = ("[image]",)
_IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif")
_VIDEO_MARKERS = ("[video]",)
_VIDEO_SUFFIXES = (".mp4", ".mov")
_FILE_MARKERS = ("[file]", "[document]")


def detect_media(message: Optional[str], internal_file_name: Optional[str] = None) -> Tuple[bool, str]:
    """Return ``(has_media, message_type)`` for a chat message."""
    text = (message or "").strip().lower()
    attachment = (internal_file_name or "").strip().lower()
    if text:
        if any(m in text for m in _IMAGE_MARKERS) or text.endswith(_IMAGE_SUFFIXES):
            return True, "image"
        if any(m in text for m in _VIDEO_MARKERS) or text.endswith(_VIDEO_SUFFIXES):
            return True, "video"
        if any(m in text for m in _FILE_MARKERS):
            return True, "file"
    if attachment:
        if attachment.endswith(_IMAGE_SUFFIXES):
            return True, "image"
        if attachment.endswith(_VIDEO_SUFFIXES):
            return True, "video"
        return True, "file"
    return False, "text"


def channel_for(provider_type: Any) -> str:
    return ChannelType.from_provider(provider_type).value
