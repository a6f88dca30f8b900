"""
SQL against the 3CX PostgreSQL schema (V18/V20).

Chat data exists twice on the source: the live ``chat_message`` /
``chat_conversation`` tables and the ``chat_messages_history_view`` /
``chat_history_view`` views. Paged queries order by ``(timestamp, id)`` and
take a keyset cursor so a page boundary never splits rows that share a
timestamp.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Cursor:
    """Keyset position. ``key`` None means "inclusive of ``ts``"."""
    ts: Optional[datetime] = None
    key: Optional[str] = None


def keyset_clause(ts_col: str, key_col: str, cursor: Optional[Cursor]) -> Tuple[str, Dict[str, Any]]:
    if cursor is None or cursor.ts is None:
        return "", {}
    if cursor.key is None:
        return f"WHERE {ts_col} >= CAST(:since_ts AS timestamptz)", {"since_ts": cursor.ts}
    return (
        f"WHERE ({ts_col} > CAST(:since_ts AS timestamptz) "
        f"OR ({ts_col} = CAST(:since_ts AS timestamptz) AND {key_col} COLLATE \"C\" > CAST(:since_key AS text)))",
        {"since_ts": cursor.ts, "since_key": cursor.key},
    )


# --- Messages -------------------------------------------------------------

LIVE_MESSAGE_COLUMNS = """
    m.id_message::text AS message_id,
    m.fkid_chat_conversation::text AS conversation_id,
    m.party AS sender_party,
    m.message,
    m.time_sent,
    m.internal_file_name,
    m.public_file_name,
    c.is_external,
    c.queue_no AS queue_number
"""

HISTORY_MESSAGE_COLUMNS = """
    h.message_id::text AS message_id,
    h.conversation_id::text AS conversation_id,
    h.is_external,
    h.queue_number,
    h.sender_participant_ip,
    h.sender_participant_name,
    h.sender_participant_no,
    h.sender_participant_phone,
    h.time_sent,
    h.message
"""


def live_messages(cursor: Optional[Cursor], limit: int) -> Tuple[str, Dict[str, Any]]:
    where, params = keyset_clause("m.time_sent", "m.id_message::text", cursor)
    sql = f"""
        SELECT {LIVE_MESSAGE_COLUMNS}
        FROM chat_message m
        JOIN chat_conversation c ON c.id = m.fkid_chat_conversation
        {where}
        ORDER BY m.time_sent ASC, m.id_message::text COLLATE "C" ASC
        LIMIT :limit
    """
    return sql, {**params, "limit": limit}


def history_messages(cursor: Optional[Cursor], limit: int) -> Tuple[str, Dict[str, Any]]:
    where, params = keyset_clause("h.time_sent", "h.message_id::text", cursor)
    sql = f"""
        SELECT {HISTORY_MESSAGE_COLUMNS}
        FROM chat_messages_history_view h
        {where}
        ORDER BY h.time_sent ASC, h.message_id::text COLLATE "C" ASC
        LIMIT :limit
    """
    return sql, {**params, "limit": limit}


LIVE_MESSAGES_BY_ID = f"""
    SELECT {LIVE_MESSAGE_COLUMNS}
    FROM chat_message m
    JOIN chat_conversation c ON c.id = m.fkid_chat_conversation
    WHERE m.id_message::text = ANY(:ids)
    ORDER BY m.time_sent ASC
"""

HISTORY_MESSAGES_BY_ID = f"""
    SELECT {HISTORY_MESSAGE_COLUMNS}
    FROM chat_messages_history_view h
    WHERE h.message_id::text = ANY(:ids)
    ORDER BY h.time_sent ASC
"""

# Unfiltered identifier scans for the periodic divergence check
LIVE_MESSAGE_IDS = "SELECT id_message::text AS message_id FROM chat_message"
HISTORY_MESSAGE_IDS = "SELECT DISTINCT message_id::text AS message_id FROM chat_messages_history_view"


# --- Conversations --------------------------------------------------------

# Includes conversations with no messages (LEFT JOIN)
LIVE_CONVERSATIONS = """
    SELECT
        c.id::text AS conversation_id,
        c.public_name AS chat_name,
        c.is_external,
        c.queue_no AS queue_number,
        COUNT(m.id_message) AS message_count,
        MIN(m.time_sent) AS first_message_at,
        MAX(m.time_sent) AS last_message_at
    FROM chat_conversation c
    LEFT JOIN chat_message m ON m.fkid_chat_conversation = c.id
    GROUP BY c.id, c.public_name, c.is_external, c.queue_no
"""

HISTORY_CONVERSATIONS = """
    SELECT
        latest.conversation_id,
        latest.chat_name,
        latest.provider_type,
        latest.participants_grp_array,
        latest.is_external,
        counts.message_count,
        counts.first_message_at,
        counts.last_message_at
    FROM (
        SELECT DISTINCT ON (conversation_id)
            conversation_id::text AS conversation_id,
            chat_name,
            provider_type,
            participants_grp_array,
            is_external
        FROM chat_history_view
        ORDER BY conversation_id, time_sent DESC
    ) latest
    LEFT JOIN (
        SELECT
            conversation_id::text AS conversation_id,
            COUNT(*) AS message_count,
            MIN(time_sent) AS first_message_at,
            MAX(time_sent) AS last_message_at
        FROM chat_messages_history_view
        GROUP BY conversation_id
    ) counts ON counts.conversation_id = latest.conversation_id
"""

# Membership table, used to name senders of live-only messages
CONVERSATION_MEMBERS = """
    SELECT
        p.fkid_chat_conversation::text AS conversation_id,
        p.party,
        p.pt_no AS extension_number,
        p.pt_name AS display_name
    FROM chat_participant p
    WHERE p.fkid_chat_conversation::text = ANY(:conversation_ids)
"""


# --- Chat file mapping ----------------------------------------------------

FILE_MAPPINGS = """
    SELECT
        id_message::text AS threecx_message_id,
        fkid_chat_conversation::text AS conversation_id,
        internal_file_name,
        public_file_name,
        file_info
    FROM chat_message
    WHERE internal_file_name IS NOT NULL
"""


# --- Extensions -----------------------------------------------------------

EXTENSIONS_V20 = """
    SELECT
        dn.iddn::text AS idextension,
        dn.number AS extension_number,
        dn.firstname,
        dn.lastname
    FROM dn
    WHERE dn.number IS NOT NULL
      AND dn.dntype = 0
    ORDER BY dn.number
"""

EXTENSIONS_LEGACY = """
    SELECT
        e.id::text AS idextension,
        e.number AS extension_number,
        e.firstname,
        e.lastname
    FROM extensions e
    WHERE e.number IS NOT NULL
    ORDER BY e.number
"""


# --- Call detail records --------------------------------------------------

def call_logs(cursor: Optional[Cursor], limit: int) -> Tuple[str, Dict[str, Any]]:
    where, params = keyset_clause("c.start_time", "c.id::text", cursor)
    sql = f"""
        SELECT
            c.id::text AS call_id,
            c.start_time AS call_started_at,
            c.end_time AS call_ended_at,
            c.is_answered,
            EXTRACT(EPOCH FROM c.ringing_dur)::int AS ring_duration,
            EXTRACT(EPOCH FROM c.talking_dur)::int AS talk_duration,
            src.caller_number,
            src.display_name AS caller_name,
            src.dn AS source_dn,
            src.dn_type AS source_dn_type,
            dst.caller_number AS callee_number,
            dst.display_name AS callee_name,
            dst.dn AS destination_dn,
            dst.dn_type AS destination_dn_type,
            EXISTS (
                SELECT 1 FROM recordings r
                JOIN cl_participants rp ON rp.id = r.cl_participants_id
                JOIN cl_segments rs ON rs.src_part_id = rp.id OR rs.dst_part_id = rp.id
                WHERE rs.call_id = c.id
            ) AS has_recording
        FROM cl_calls c
        LEFT JOIN LATERAL (
            SELECT p.* FROM cl_segments s
            JOIN cl_participants p ON p.id = s.src_part_id
            WHERE s.call_id = c.id
            ORDER BY s.seq_order ASC
            LIMIT 1
        ) src ON TRUE
        LEFT JOIN LATERAL (
            SELECT p.* FROM cl_segments s
            JOIN cl_participants p ON p.id = s.dst_part_id
            WHERE s.call_id = c.id
            ORDER BY s.seq_order DESC
            LIMIT 1
        ) dst ON TRUE
        {where}
        ORDER BY c.start_time ASC, c.id::text COLLATE "C" ASC
        LIMIT :limit
    """
    return sql, {**params, "limit": limit}


# --- Call recordings ------------------------------------------------------

def recordings(cursor: Optional[Cursor], limit: int) -> Tuple[str, Dict[str, Any]]:
    where, params = keyset_clause("r.start_time", "r.id_recording::text", cursor)
    sql = f"""
        SELECT
            r.id_recording::text AS recording_id,
            r.recording_url,
            r.start_time,
            r.end_time,
            p.dn AS extension_number,
            p.caller_number AS caller,
            p.display_name AS caller_name
        FROM recordings r
        LEFT JOIN cl_participants p ON p.id = r.cl_participants_id
        {where}
        ORDER BY r.start_time ASC, r.id_recording::text COLLATE "C" ASC
        LIMIT :limit
    """
    return sql, {**params, "limit": limit}
