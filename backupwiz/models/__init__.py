from .tenant import Tenant
from .sync_status import SyncStatus
from .sync_log import SyncLog
from .conversation import Conversation, Participant
from .message import Message
from .media_file import MediaFile
from .call_log import CallLog
from .recording import CallRecording
from .voicemail import Voicemail
from .fax import Fax
from .meeting import MeetingRecording
from .extension import Extension
from .notification_log import NotificationLog

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'Tenant',
    'SyncStatus',
    'SyncLog',
    'Conversation',
    'Participant',
    'Message',
    'MediaFile',
    'CallLog',
    'CallRecording',
    'Voicemail',
    'Fax',
    'MeetingRecording',
    'Extension',
    'NotificationLog',
]
