"""Progress milestones for an analysis job, shared by URL and upload sources."""

PROGRESS_CREATED = 0
PROGRESS_ACQUIRING = 10
PROGRESS_AUDIO_EXTRACTED = 25
PROGRESS_TRANSCRIBING = 35
PROGRESS_TRANSCRIPT_SAVED = 50
PROGRESS_SEGMENTING = 60
PROGRESS_TOPICS_SAVED = 80
PROGRESS_SUMMARIZING = 90
PROGRESS_COMPLETED = 100

PROGRESS_SCHEDULE = (
    PROGRESS_CREATED,
    PROGRESS_ACQUIRING,
    PROGRESS_AUDIO_EXTRACTED,
    PROGRESS_TRANSCRIBING,
    PROGRESS_TRANSCRIPT_SAVED,
    PROGRESS_SEGMENTING,
    PROGRESS_TOPICS_SAVED,
    PROGRESS_SUMMARIZING,
    PROGRESS_COMPLETED,
)
