"""Profile repository — whole-profile reads and own-profile sections.

Learn: Service layer between the UI and the entity store. Two jobs:
1. Scope every own-profile call to the session's current user. The owner
   id comes from the session reader, so asking for data with an empty
   session raises NotAuthenticatedError before any I/O happens.
2. Assemble aggregates. One profile = 7 independent sub-resource reads,
   run concurrently with asyncio.gather; a sub-resource that fails
   degrades to its default on its own, the rest of the profile stands.

Write paths report True/False (or the new id / None); read paths degrade
to empty lists and default singletons. Store faults never escape.
"""

import asyncio
from typing import Optional, TypeVar

import structlog
from pydantic import BaseModel

from cvbank.auth.session_cache import SessionReader
from cvbank.backends.base import EntityStore
from cvbank.errors import BackendError, PermissionDeniedError
from cvbank.schemas.collections import SINGLETONS, Collection, Singleton
from cvbank.schemas.profile import (
    AcademicRecord,
    AcademicRecordCreate,
    ExperienceCreate,
    Language,
    LanguageCreate,
    PersonalData,
    ProfessionalExperience,
    Profile,
    Reference,
    ReferenceCreate,
    Tool,
    ToolCreate,
    UserProfile,
    UserRole,
    UserSettings,
)

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)


class ProfileRepository:
    def __init__(self, store: EntityStore, session: SessionReader):
        self.store = store
        self.session = session

    def _owner(self) -> str:
        return self.session.current_user_id()

    def _require_admin(self) -> None:
        self._owner()
        if not self.session.is_admin():
            raise PermissionDeniedError("Administrator role required")

    # ─── Generic section access ──────────────────────────

    async def _read(self, owner_id: str, collection: Collection) -> list:
        try:
            return await self.store.read(owner_id, collection)
        except BackendError as e:
            logger.warning(
                "profile.read_failed", owner_id=owner_id, section=collection.value, error=str(e)
            )
            return []

    async def _singleton(self, owner_id: str, kind: Singleton) -> BaseModel:
        try:
            value = await self.store.get_singleton(owner_id, kind)
        except BackendError as e:
            logger.warning(
                "profile.read_failed", owner_id=owner_id, section=kind.value, error=str(e)
            )
            value = None
        return value if value is not None else SINGLETONS[kind]()

    async def _create(self, collection: Collection, data: BaseModel) -> Optional[str]:
        owner_id = self._owner()
        try:
            return await self.store.create(owner_id, collection, data)
        except BackendError as e:
            logger.error("profile.write_failed", op="create", section=collection.value, error=str(e))
            return None

    async def _update(self, collection: Collection, entity: BaseModel) -> bool:
        owner_id = self._owner()
        try:
            return await self.store.update(owner_id, collection, entity.id, entity)
        except BackendError as e:
            logger.error("profile.write_failed", op="update", section=collection.value, error=str(e))
            return False

    async def _delete(self, collection: Collection, entity_id: str) -> bool:
        owner_id = self._owner()
        try:
            await self.store.delete(owner_id, collection, entity_id)
            return True
        except BackendError as e:
            logger.error("profile.write_failed", op="delete", section=collection.value, error=str(e))
            return False

    async def _save(self, kind: Singleton, data: BaseModel) -> bool:
        owner_id = self._owner()
        try:
            await self.store.upsert_singleton(owner_id, kind, data)
            return True
        except BackendError as e:
            logger.error("profile.write_failed", op="upsert", section=kind.value, error=str(e))
            return False

    # ─── Personal data ───────────────────────────────────

    async def get_personal_data(self) -> PersonalData:
        return await self._singleton(self._owner(), Singleton.PERSONAL_DATA)

    async def save_personal_data(self, data: PersonalData) -> bool:
        return await self._save(Singleton.PERSONAL_DATA, data)

    # ─── Professional experience ─────────────────────────

    async def get_professional_experiences(self) -> list[ProfessionalExperience]:
        return await self._read(self._owner(), Collection.PROFESSIONAL_EXPERIENCES)

    async def add_professional_experience(self, data: ExperienceCreate) -> Optional[str]:
        return await self._create(Collection.PROFESSIONAL_EXPERIENCES, data)

    async def update_professional_experience(self, experience: ProfessionalExperience) -> bool:
        return await self._update(Collection.PROFESSIONAL_EXPERIENCES, experience)

    async def delete_professional_experience(self, experience_id: str) -> bool:
        return await self._delete(Collection.PROFESSIONAL_EXPERIENCES, experience_id)

    # ─── Academic records ────────────────────────────────

    async def get_academic_records(self) -> list[AcademicRecord]:
        return await self._read(self._owner(), Collection.ACADEMIC_RECORDS)

    async def add_academic_record(self, data: AcademicRecordCreate) -> Optional[str]:
        return await self._create(Collection.ACADEMIC_RECORDS, data)

    async def update_academic_record(self, record: AcademicRecord) -> bool:
        return await self._update(Collection.ACADEMIC_RECORDS, record)

    async def delete_academic_record(self, record_id: str) -> bool:
        return await self._delete(Collection.ACADEMIC_RECORDS, record_id)

    # ─── Languages ───────────────────────────────────────

    async def get_languages(self) -> list[Language]:
        return await self._read(self._owner(), Collection.LANGUAGES)

    async def add_language(self, data: LanguageCreate) -> Optional[str]:
        return await self._create(Collection.LANGUAGES, data)

    async def delete_language(self, language_id: str) -> bool:
        return await self._delete(Collection.LANGUAGES, language_id)

    # ─── Tools ───────────────────────────────────────────

    async def get_tools(self) -> list[Tool]:
        return await self._read(self._owner(), Collection.TOOLS)

    async def add_tool(self, data: ToolCreate) -> Optional[str]:
        return await self._create(Collection.TOOLS, data)

    async def delete_tool(self, tool_id: str) -> bool:
        return await self._delete(Collection.TOOLS, tool_id)

    # ─── References ──────────────────────────────────────

    async def get_references(self) -> list[Reference]:
        return await self._read(self._owner(), Collection.REFERENCES)

    async def add_reference(self, data: ReferenceCreate) -> Optional[str]:
        return await self._create(Collection.REFERENCES, data)

    async def update_reference(self, reference: Reference) -> bool:
        return await self._update(Collection.REFERENCES, reference)

    async def delete_reference(self, reference_id: str) -> bool:
        return await self._delete(Collection.REFERENCES, reference_id)

    # ─── Settings ────────────────────────────────────────

    async def get_settings(self) -> UserSettings:
        return await self._singleton(self._owner(), Singleton.SETTINGS)

    async def save_settings(self, settings: UserSettings) -> bool:
        return await self._save(Singleton.SETTINGS, settings)

    # ─── Aggregates ──────────────────────────────────────

    async def _assemble(self, owner_id: str) -> Profile:
        (
            personal_data,
            experiences,
            records,
            languages,
            tools,
            references,
            settings,
        ) = await asyncio.gather(
            self._singleton(owner_id, Singleton.PERSONAL_DATA),
            self._read(owner_id, Collection.PROFESSIONAL_EXPERIENCES),
            self._read(owner_id, Collection.ACADEMIC_RECORDS),
            self._read(owner_id, Collection.LANGUAGES),
            self._read(owner_id, Collection.TOOLS),
            self._read(owner_id, Collection.REFERENCES),
            self._singleton(owner_id, Singleton.SETTINGS),
        )
        return Profile(
            personal_data=personal_data,
            professional_experiences=experiences,
            academic_records=records,
            languages=languages,
            tools=tools,
            references=references,
            settings=settings,
        )

    async def get_own_profile(self) -> Profile:
        """Every section of the current user, defaults for anything missing."""
        return await self._assemble(self._owner())

    async def get_profile_for_user(self, user_id: str) -> Optional[UserProfile]:
        """Any user's profile. Administrators only; None if no such user."""
        self._require_admin()
        try:
            user = await self.store.get_user(user_id)
        except BackendError as e:
            logger.warning("profile.user_lookup_failed", user_id=user_id, error=str(e))
            return None
        if user is None:
            return None
        return UserProfile(user=user, profile=await self._assemble(user_id))

    async def list_all_user_profiles(self) -> list[UserProfile]:
        """Every candidate (role=user) with their profile. Administrators only.

        Profiles are assembled concurrently; each is complete (every
        sub-resource fetched or defaulted) before it's returned.
        """
        self._require_admin()
        try:
            users = await self.store.list_users()
        except BackendError as e:
            logger.warning("profile.list_users_failed", error=str(e))
            return []
        candidates = [u for u in users if u.role == UserRole.USER]
        profiles = await asyncio.gather(*(self._assemble(u.id) for u in candidates))
        return [UserProfile(user=u, profile=p) for u, p in zip(candidates, profiles)]
