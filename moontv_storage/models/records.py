"""
Pydantic models for the per-user records: play history, favorites and skip
configs. Field names match the JSON written by earlier deployments.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

SEARCH_HISTORY_LIMIT = 20


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class PlayRecord(_Record):
    """Playback progress for one title from one source."""

    title: str
    source_name: str
    year: Optional[str] = None
    cover: str = ""
    index: int = Field(ge=1)  # 1-based episode number
    total_episodes: int = Field(ge=0)
    play_time: float = Field(ge=0)  # seconds watched
    total_time: float = Field(ge=0)  # duration in seconds
    save_time: int  # epoch milliseconds
    search_title: Optional[str] = None


class Favorite(_Record):
    title: str
    source_name: str
    year: Optional[str] = None
    cover: str = ""
    total_episodes: int = Field(ge=0)
    save_time: int
    search_title: Optional[str] = None


class SkipConfig(_Record):
    """
    Intro/outro skipping for one title. ``outro_time`` is an offset from the
    end of the video, so it is zero or negative.
    """

    enable: bool = False
    intro_time: float = Field(default=0, ge=0)
    outro_time: float = Field(default=0, le=0)

    @classmethod
    def disabled(cls) -> "SkipConfig":
        """The value an absent record stands for."""
        return cls(enable=False, intro_time=0, outro_time=0)


class UserRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    USER = "user"

    @property
    def is_default(self) -> bool:
        return self is UserRole.USER
