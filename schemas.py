"""
Database Schemas and request bodies for the shared calendar API

Each document model corresponds to a MongoDB collection.
Collection name is the lowercase class name (e.g., User -> "user").
Request bodies below them are the single place where input is validated.
"""
from datetime import date, datetime
from typing import List, Literal, Optional

from bson import ObjectId
from dateutil import parser as dateparser
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

TIME_PATTERN = r"^([01][0-9]|2[0-3]):[0-5][0-9]$"
COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"

Permission = Literal["view", "edit"]
Frequency = Literal["daily", "weekly", "monthly"]


def parse_date(value) -> Optional[str]:
    """Normalise a date-like value to an ISO ``YYYY-MM-DD`` string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Invalid date")
    try:
        return dateparser.parse(value.strip()).date().isoformat()
    except (ValueError, OverflowError):
        raise ValueError(f"Invalid date: {value}")


# -------- Documents --------

class Points(BaseModel):
    weekly_total: int = 0
    lifetime_total: int = 0
    week_start_date: Optional[str] = Field(None, description="ISO date of the Monday the weekly total belongs to")


class Streak(BaseModel):
    current: int = 0
    last_completion_date: Optional[str] = None


class DailyTasks(BaseModel):
    count: int = 0
    date: Optional[str] = None


class User(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    username: str = Field(..., description="Unique login name")
    password: str = Field(..., description="Hashed password")
    email: Optional[str] = Field(None, description="Lower-cased email address")
    display_name: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = Field(None, description="data:image/ URI")
    calendars: List[ObjectId] = Field(default_factory=list, description="Owned calendar ids")
    friends: List[ObjectId] = Field(default_factory=list, description="Friend user ids, kept symmetric")
    points: Points = Field(default_factory=Points)
    streak: Streak = Field(default_factory=Streak)
    daily_tasks_completed: DailyTasks = Field(default_factory=DailyTasks)


class FriendRequest(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    from_user: ObjectId
    to_user: ObjectId
    pair: str = Field(..., description="Sorted 'id:id' key of both users")
    status: Literal["pending", "accepted", "rejected"] = "pending"


class SharedEntry(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user: ObjectId
    permission: Permission = "view"


class Calendar(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    color: str = "#3788d8"
    description: str = ""
    owner: ObjectId
    events: List[ObjectId] = Field(default_factory=list)
    shared_with: List[SharedEntry] = Field(default_factory=list)


class Recurrence(BaseModel):
    frequency: Frequency
    interval: int = Field(1, ge=1, description="Repeat every N frequency units")
    until: Optional[str] = Field(None, description="ISO date of the last possible occurrence")

    @field_validator("until", mode="before")
    @classmethod
    def _until(cls, v):
        return parse_date(v)


class Event(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    title: str
    date: str = Field(..., description="ISO date string")
    time: Optional[str] = None
    end_time: Optional[str] = None
    is_all_day: bool = False
    details: str = ""
    location: str = ""
    color: str = "#000000"
    recurrence: Optional[Recurrence] = None
    owner: ObjectId
    calendar: Optional[ObjectId] = None
    shared_with: List[ObjectId] = Field(default_factory=list)
    completed: bool = False
    completed_at: Optional[datetime] = None
    completed_by: Optional[ObjectId] = None
    points_awarded: int = 0


# -------- Request bodies --------

class RegisterBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    email: Optional[EmailStr] = None


class LoginBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProfileBody(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    display_name: Optional[str] = Field(None, min_length=1, max_length=50)
    bio: Optional[str] = Field(None, max_length=200)
    profile_image: Optional[str] = None

    @field_validator("profile_image")
    @classmethod
    def _image(cls, v):
        if v is not None and not v.startswith("data:image/"):
            raise ValueError("Invalid image")
        return v


class AccountBody(BaseModel):
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)


class FriendRequestBody(BaseModel):
    to: str = Field(..., min_length=1, description="Target user id")


class RespondBody(BaseModel):
    accept: bool


class CalendarCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field("#3788d8", pattern=COLOR_PATTERN)
    description: str = Field("", max_length=500)


class CalendarUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)
    description: Optional[str] = Field(None, max_length=500)


class ShareBody(BaseModel):
    friend_ids: List[str] = Field(..., min_length=1)
    permission: Permission = "view"


class UnshareBody(BaseModel):
    user_id: str = Field(..., min_length=1)


class _EventFields(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    details: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    recurrence: Optional[Recurrence] = None
    shared_with: Optional[List[str]] = None

    @field_validator("date", mode="before", check_fields=False)
    @classmethod
    def _date(cls, v):
        return parse_date(v)


class EventCreate(_EventFields):
    title: str = Field(..., min_length=1, max_length=100)
    date: str
    is_all_day: bool = False
    color: str = Field("#000000", pattern=COLOR_PATTERN)
    calendar_id: Optional[str] = None

    @model_validator(mode="after")
    def _until_after_date(self):
        if self.recurrence and self.recurrence.until and self.recurrence.until < self.date:
            raise ValueError("Recurrence end date must not be before the event date")
        return self


class EventUpdate(_EventFields):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    date: Optional[str] = None
    is_all_day: Optional[bool] = None
    color: Optional[str] = Field(None, pattern=COLOR_PATTERN)
