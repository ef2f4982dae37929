"""Text-to-Speech services for bus arrival announcements."""

from .announcer import (
    Announcement,
    AudioSink,
    BusAnnouncer,
    FileAudioSink,
    format_announcement,
)
from .google_tts import (
    GoogleTTSService,
    SimpleTTSService,
    get_tts_service,
    reset_tts_service,
    GOOGLE_TTS_AVAILABLE,
    GTTS_AVAILABLE
)

__all__ = [
    'Announcement',
    'AudioSink',
    'BusAnnouncer',
    'FileAudioSink',
    'format_announcement',
    'GoogleTTSService',
    'SimpleTTSService',
    'get_tts_service',
    'reset_tts_service',
    'GOOGLE_TTS_AVAILABLE',
    'GTTS_AVAILABLE'
]
