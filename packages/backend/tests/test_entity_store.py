"""Entity store contract — run against every backend.

Learn: The `backend` fixture is parametrized over local, sql and rest,
so each test here checks the same guarantees three times:
1. Owner isolation: one owner's id never reaches another owner's rows
2. Idempotent delete, update-of-missing returns False
3. Deterministic ordering (newest start date first; names A→Z)
4. Singletons upsert: at most one value per owner
5. Case-insensitive email uniqueness in the user directory

The rest backend only talks to the provider while signed in as the
owner, so tests sign in as whoever they act for.
"""

from datetime import date

import pytest

from cvbank.errors import EmailAlreadyRegisteredError
from cvbank.schemas.collections import Collection, Singleton
from cvbank.schemas.profile import (
    ExperienceCreate,
    LanguageCreate,
    LanguageLevel,
    NotificationSettings,
    PersonalData,
    ToolCreate,
    User,
    UserRole,
    UserSettings,
)

from conftest import sign_up_user


def _experience(company: str, start: date, **kwargs) -> ExperienceCreate:
    return ExperienceCreate(company=company, role="Developer", start_date=start, **kwargs)


# ═══════════════════════════════════════════════════════════
# User directory
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_and_get_user(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    assert user.name == "Ana"
    assert user.email == "ana@x.com"
    assert user.role == UserRole.USER

    found = await backend.store.find_user_by_email("ANA@X.com")
    assert found is not None and found.id == user.id


@pytest.mark.asyncio
async def test_unknown_user(backend):
    await sign_up_user(backend, "Ana", "ana@x.com")
    assert await backend.store.find_user_by_email("nobody@x.com") is None


@pytest.mark.asyncio
async def test_duplicate_email_is_case_insensitive(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    with pytest.raises(EmailAlreadyRegisteredError):
        await backend.store.create_user(
            User(id=user.id if backend.name == "rest" else "other-id",
                 name="Ana Again", email="Ana@X.com")
        )


# ═══════════════════════════════════════════════════════════
# Collections
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_then_read(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    tool_id = await backend.store.create(
        user.id, Collection.TOOLS, ToolCreate(name="Python", category="Language")
    )
    assert tool_id

    tools = await backend.store.read(user.id, Collection.TOOLS)
    assert [(t.id, t.name, t.category) for t in tools] == [(tool_id, "Python", "Language")]


@pytest.mark.asyncio
async def test_owner_isolation(backend):
    ana = await sign_up_user(backend, "Ana", "ana@x.com")
    ana_tool = await backend.store.create(ana.id, Collection.TOOLS, ToolCreate(name="Go"))

    luis = await sign_up_user(backend, "Luis", "luis@x.com")
    assert await backend.store.read(luis.id, Collection.TOOLS) == []

    # Luis can't touch Ana's row through his own owner id
    changed = await backend.store.update(
        luis.id, Collection.TOOLS, ana_tool, ToolCreate(name="Hijacked")
    )
    assert changed is False
    await backend.store.delete(luis.id, Collection.TOOLS, ana_tool)

    await backend.identity.sign_in("ana@x.com", "pw123")
    tools = await backend.store.read(ana.id, Collection.TOOLS)
    assert [t.name for t in tools] == ["Go"]


@pytest.mark.asyncio
async def test_update(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    exp_id = await backend.store.create(
        user.id, Collection.PROFESSIONAL_EXPERIENCES, _experience("Acme", date(2020, 1, 1))
    )
    changed = await backend.store.update(
        user.id,
        Collection.PROFESSIONAL_EXPERIENCES,
        exp_id,
        _experience("Acme Corp", date(2020, 1, 1), end_date=date(2022, 6, 30)),
    )
    assert changed is True

    [exp] = await backend.store.read(user.id, Collection.PROFESSIONAL_EXPERIENCES)
    assert exp.id == exp_id
    assert exp.company == "Acme Corp"
    assert exp.end_date == date(2022, 6, 30)


@pytest.mark.asyncio
async def test_update_missing_returns_false(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    changed = await backend.store.update(
        user.id, Collection.TOOLS, "no-such-id", ToolCreate(name="Rust")
    )
    assert changed is False


@pytest.mark.asyncio
async def test_delete_is_idempotent(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    tool_id = await backend.store.create(user.id, Collection.TOOLS, ToolCreate(name="Go"))

    await backend.store.delete(user.id, Collection.TOOLS, tool_id)
    await backend.store.delete(user.id, Collection.TOOLS, tool_id)
    await backend.store.delete(user.id, Collection.TOOLS, "never-existed")
    assert await backend.store.read(user.id, Collection.TOOLS) == []


@pytest.mark.asyncio
async def test_experiences_newest_first(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    await backend.store.create(
        user.id, Collection.PROFESSIONAL_EXPERIENCES, _experience("Old", date(2020, 3, 1))
    )
    await backend.store.create(
        user.id, Collection.PROFESSIONAL_EXPERIENCES, _experience("New", date(2022, 3, 1))
    )
    experiences = await backend.store.read(user.id, Collection.PROFESSIONAL_EXPERIENCES)
    assert [e.company for e in experiences] == ["New", "Old"]


@pytest.mark.asyncio
async def test_languages_alphabetical(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    for name in ("spanish", "English", "French"):
        await backend.store.create(
            user.id, Collection.LANGUAGES, LanguageCreate(name=name, level=LanguageLevel.BASIC)
        )
    languages = await backend.store.read(user.id, Collection.LANGUAGES)
    assert [lang.name for lang in languages] == ["English", "French", "spanish"]
    assert all(lang.level == LanguageLevel.BASIC for lang in languages)


@pytest.mark.asyncio
async def test_current_experience_has_no_end_date(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    await backend.store.create(
        user.id,
        Collection.PROFESSIONAL_EXPERIENCES,
        _experience("Acme", date(2021, 1, 1), end_date=date(2023, 1, 1), is_current=True),
    )
    [exp] = await backend.store.read(user.id, Collection.PROFESSIONAL_EXPERIENCES)
    assert exp.is_current is True
    assert exp.end_date is None


@pytest.mark.asyncio
async def test_empty_owner_rejected(backend):
    with pytest.raises(ValueError):
        await backend.store.read("", Collection.TOOLS)


# ═══════════════════════════════════════════════════════════
# Singletons
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_singleton_absent_until_written(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    assert await backend.store.get_singleton(user.id, Singleton.PERSONAL_DATA) is None


@pytest.mark.asyncio
async def test_singleton_upsert_keeps_one_value(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    await backend.store.upsert_singleton(
        user.id, Singleton.PERSONAL_DATA, PersonalData(full_name="Ana D", city="Bogota")
    )
    await backend.store.upsert_singleton(
        user.id, Singleton.PERSONAL_DATA, PersonalData(full_name="Ana Diaz")
    )
    data = await backend.store.get_singleton(user.id, Singleton.PERSONAL_DATA)
    assert data.full_name == "Ana Diaz"
    assert data.city == ""


@pytest.mark.asyncio
async def test_settings_round_trip(backend):
    user = await sign_up_user(backend, "Ana", "ana@x.com")
    await backend.store.upsert_singleton(
        user.id,
        Singleton.SETTINGS,
        UserSettings(notifications=NotificationSettings(new_opportunities=False)),
    )
    settings = await backend.store.get_singleton(user.id, Singleton.SETTINGS)
    assert settings.notifications.new_opportunities is False
