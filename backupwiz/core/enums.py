"""
Shared enums and constants used across the sync engine.
"""

from enum import Enum


class SyncType(str, Enum):
    """One row in sync_status exists per tenant for each of these."""
    EXTENSIONS = "extensions"
    CONVERSATIONS = "conversations"
    MESSAGES = "messages"
    MEDIA = "media"
    CDR = "cdr"
    RECORDINGS = "recordings"
    VOICEMAILS = "voicemails"
    FAXES = "faxes"
    MEETINGS = "meetings"


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class HealthLevel(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _HEALTH_RANK[self]


_HEALTH_RANK = {
    HealthLevel.HEALTHY: 0,
    HealthLevel.WARNING: 1,
    HealthLevel.CRITICAL: 2,
}


class Provenance(str, Enum):
    """Which source representation(s) a reconciled record came from."""
    LIVE_ONLY = "live"
    HISTORY_ONLY = "history"
    BOTH = "both"


class ChannelType(str, Enum):
    SMS = "sms"
    MMS = "mms"
    FACEBOOK = "facebook"
    WHATSAPP = "whatsapp"
    LIVECHAT = "livechat"
    TELEGRAM = "telegram"
    TEAMS = "teams"
    INTERNAL = "internal"

    @classmethod
    def from_provider(cls, provider_type) -> "ChannelType":
        if not provider_type:
            return cls.INTERNAL
        provider = str(provider_type).strip().lower()
        for channel, markers in _PROVIDER_MARKERS:
            if any(marker in provider for marker in markers):
                return channel
        return cls.INTERNAL


_PROVIDER_MARKERS = (
    (ChannelType.SMS, ("sms",)),
    (ChannelType.MMS, ("mms",)),
    (ChannelType.FACEBOOK, ("facebook", "fb")),
    (ChannelType.WHATSAPP, ("whatsapp", "wa")),
    (ChannelType.LIVECHAT, ("livechat", "webchat")),
    (ChannelType.TELEGRAM, ("telegram",)),
    (ChannelType.TEAMS, ("teams",)),
)


class SyncLogStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


# Minutes since last success before a sync type is (warning, critical).
HEALTH_THRESHOLDS = {
    SyncType.MESSAGES: (10, 15),
    SyncType.MEDIA: (20, 30),
    SyncType.CDR: (15, 30),
    SyncType.RECORDINGS: (30, 60),
    SyncType.VOICEMAILS: (30, 60),
    SyncType.FAXES: (30, 60),
    SyncType.MEETINGS: (30, 60),
    SyncType.EXTENSIONS: (90, 120),
}
DEFAULT_HEALTH_THRESHOLD = (30, 60)

# Staleness reported for a sync type that has never succeeded.
NEVER_SYNCED_MINUTES = 9999

SYNC_HEALTH_ALERT = "sync_health_alert"
