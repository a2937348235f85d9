from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


from lyrics_vault.models.job import JobKind, JobStatus, ProcessingJob  # noqa: E402
from lyrics_vault.models.song import LyricLine, Lyrics, Song  # noqa: E402

__all__ = [
    "Base",
    "JobKind",
    "JobStatus",
    "LyricLine",
    "Lyrics",
    "ProcessingJob",
    "Song",
]
