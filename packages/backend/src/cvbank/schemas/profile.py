"""Pydantic schemas for users and profile sections.

Learn: Separate "Create" schemas (input, no id) from read schemas (with
the generated id). Every section except the two singletons carries an
id unique within its owner's collection; the owner id itself is never
part of the payload; stores attach it at the storage boundary.
"""

import enum
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class LanguageLevel(str, enum.Enum):
    BASIC = "Basic"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    NATIVE = "Native"


# ─── Users ──────────────────────────────────────────────

class User(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole = UserRole.USER
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"from_attributes": True}


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


# ─── Singletons ─────────────────────────────────────────

class PersonalData(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    country: str = ""
    summary: str = ""

    model_config = {"from_attributes": True}


class NotificationSettings(BaseModel):
    new_opportunities: bool = True


class UserSettings(BaseModel):
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)


# ─── Professional experience ────────────────────────────

class ExperienceCreate(BaseModel):
    company: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)
    country: str = ""
    start_date: date
    end_date: Optional[date] = None
    is_current: bool = False
    description: str = ""

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def clear_end_date_when_current(self):
        if self.is_current:
            self.end_date = None
        return self


class ProfessionalExperience(ExperienceCreate):
    id: str


# ─── Academic records ───────────────────────────────────

class AcademicRecordCreate(BaseModel):
    institution: str = Field(..., min_length=1)
    degree: str = Field(..., min_length=1)
    field_of_study: str = ""
    start_date: date
    end_date: Optional[date] = None
    in_progress: bool = False
    description: str = ""

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def clear_end_date_when_in_progress(self):
        if self.in_progress:
            self.end_date = None
        return self


class AcademicRecord(AcademicRecordCreate):
    id: str


# ─── Languages, tools, references ───────────────────────

class LanguageCreate(BaseModel):
    name: str = Field(..., min_length=1)
    level: LanguageLevel

    model_config = {"from_attributes": True}


class Language(LanguageCreate):
    id: str


class ToolCreate(BaseModel):
    name: str = Field(..., min_length=1)
    category: str = ""

    model_config = {"from_attributes": True}


class Tool(ToolCreate):
    id: str


class ReferenceCreate(BaseModel):
    name: str = Field(..., min_length=1)
    relationship: str = ""
    company: str = ""
    email: str = ""
    phone: str = ""

    model_config = {"from_attributes": True}


class Reference(ReferenceCreate):
    id: str


# ─── Aggregates ─────────────────────────────────────────

class Profile(BaseModel):
    """Everything one user has written. Missing parts are defaults."""
    personal_data: PersonalData = Field(default_factory=PersonalData)
    professional_experiences: list[ProfessionalExperience] = []
    academic_records: list[AcademicRecord] = []
    languages: list[Language] = []
    tools: list[Tool] = []
    references: list[Reference] = []
    settings: UserSettings = Field(default_factory=UserSettings)


class UserProfile(BaseModel):
    user: User
    profile: Profile
