"""
SMX Chart Votes - Data Models

Pydantic models for upstream SMX API payloads, the merged chart list served
to clients, and the vote / account records kept in SQLite.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field, StrictInt

VoteDirection = Literal["up", "down"]
VoteAction = Literal["created", "removed", "flipped"]


# ---------------------------------------------------------------------------
# SMX API payloads
# ---------------------------------------------------------------------------
class Song(BaseModel):
    id: int
    title: str
    artist: str = ""
    bpm: str = ""
    genre: str = ""
    subtitle: str = ""
    cover_thumb: str = ""
    cover: str = ""


class Chart(BaseModel):
    id: int
    song_id: int
    difficulty: int
    difficulty_name: str
    difficulty_display: str = ""
    meter: Optional[int] = None
    steps_author: str = ""
    play_count: int = 0
    pass_count: int = 0


class ChartWithSong(Chart):
    """A chart with corrected difficulty labels and its song embedded."""

    song: Song


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
class VoteRequest(BaseModel):
    chart_id: StrictInt
    direction: VoteDirection


class Vote(BaseModel):
    id: str
    chart_id: int
    voter_id: str
    direction: VoteDirection
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class VoteResult(BaseModel):
    """Outcome of a vote submission: the affected record and what happened to it."""

    action: VoteAction
    vote: Vote


class VoteCount(BaseModel):
    chart_id: int
    upvotes: int = 0
    downvotes: int = 0
    user_vote: Optional[VoteDirection] = None


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------
class Credentials(BaseModel):
    username: str = Field(min_length=3, max_length=32, pattern=r"^[A-Za-z0-9_.-]+$")
    password: str = Field(min_length=1, max_length=256)


class User(BaseModel):
    id: str
    username: str
    created_at: Optional[str] = None
