"""Profile collections and singletons, with their ordering rules.

Learn: Centralizing the section catalogue keeps the three backends in
agreement: which schema each section uses, and how a list read is
ordered. Experiences and academic records come back newest-first by
start date; languages, tools and references alphabetically by name.
Ties break on id so the order is fully deterministic.
"""

import enum
from dataclasses import dataclass
from typing import Iterable, TypeVar

from pydantic import BaseModel

from cvbank.schemas.profile import (
    AcademicRecord,
    AcademicRecordCreate,
    ExperienceCreate,
    Language,
    LanguageCreate,
    PersonalData,
    ProfessionalExperience,
    Reference,
    ReferenceCreate,
    Tool,
    ToolCreate,
    UserSettings,
)

T = TypeVar("T", bound=BaseModel)


class Collection(str, enum.Enum):
    PROFESSIONAL_EXPERIENCES = "professional_experiences"
    ACADEMIC_RECORDS = "academic_records"
    LANGUAGES = "languages"
    TOOLS = "tools"
    REFERENCES = "references"


class Singleton(str, enum.Enum):
    PERSONAL_DATA = "personal_data"
    SETTINGS = "settings"


@dataclass(frozen=True)
class CollectionMeta:
    create_schema: type[BaseModel]
    read_schema: type[BaseModel]
    order_field: str
    newest_first: bool


COLLECTIONS: dict[Collection, CollectionMeta] = {
    Collection.PROFESSIONAL_EXPERIENCES: CollectionMeta(
        ExperienceCreate, ProfessionalExperience, "start_date", newest_first=True
    ),
    Collection.ACADEMIC_RECORDS: CollectionMeta(
        AcademicRecordCreate, AcademicRecord, "start_date", newest_first=True
    ),
    Collection.LANGUAGES: CollectionMeta(
        LanguageCreate, Language, "name", newest_first=False
    ),
    Collection.TOOLS: CollectionMeta(ToolCreate, Tool, "name", newest_first=False),
    Collection.REFERENCES: CollectionMeta(
        ReferenceCreate, Reference, "name", newest_first=False
    ),
}

SINGLETONS: dict[Singleton, type[BaseModel]] = {
    Singleton.PERSONAL_DATA: PersonalData,
    Singleton.SETTINGS: UserSettings,
}


def sort_entities(collection: Collection, items: Iterable[T]) -> list[T]:
    """Apply the collection's ordering to already owner-filtered rows."""
    meta = COLLECTIONS[collection]
    items = sorted(items, key=lambda e: e.id)
    if meta.newest_first:
        return sorted(items, key=lambda e: getattr(e, meta.order_field), reverse=True)
    return sorted(items, key=lambda e: getattr(e, meta.order_field).casefold())
