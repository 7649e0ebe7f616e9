"""cvbank CLI — the profile manager from a terminal.

Usage:
    cvbank register "Ana Diaz" ana@example.com     # Create an account, sign in
    cvbank login ana@example.com                   # Sign in (prompts for password)
    cvbank whoami                                  # Who the session cache says you are
    cvbank profile                                 # Your whole profile as JSON
    cvbank experience add --company Acme --role Dev --start 2020-01-01 --current
    cvbank language add English --level Advanced
    cvbank tool list
    cvbank admin users --search python --experience 3-5
    cvbank admin stats
    cvbank admin profile <user-id>
    cvbank serve                                   # Run the provider service

Every command is a route: it is checked against the access guard with
the current session before anything else happens, exactly like a page
navigation would be.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import sys
from datetime import datetime
from typing import Optional

import click
from pydantic import ValidationError

from cvbank import __version__
from cvbank.config import get_settings
from cvbank.context import AppContext, open_context
from cvbank.errors import ConfigurationError
from cvbank.logconfig import configure_logging
from cvbank.routing import (
    ADMIN_LANDING_PATH,
    LOGIN_PATH,
    REGISTER_PATH,
    USER_LANDING_PATH,
    RedirectTo,
    landing_path,
    resolve_path,
)
from cvbank.schemas.profile import (
    ExperienceCreate,
    LanguageCreate,
    LanguageLevel,
    ToolCreate,
)
from cvbank.services import analytics

EXPERIENCE_PATH = "/dashboard/professional-experience"
LANGUAGES_PATH = "/languages"
TOOLS_PATH = "/tool-management"
ADMIN_USERS_PATH = "/admin/users"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _context(obj: dict):
    """open_context() with whatever the group (or a test) put in obj."""
    return open_context(
        settings=obj.get("settings"),
        storage=obj.get("storage"),
        **obj.get("backend_options", {}),
    )


def _navigate(app: AppContext, path: str) -> None:
    """Apply the access guard to path; exit 1 on a redirect."""
    decision = resolve_path(path, app.cache.get())
    if isinstance(decision, RedirectTo):
        app.navigator.navigate(decision.path)
        if decision.path == LOGIN_PATH:
            click.secho("Not signed in. Run `cvbank login` first.", fg="red", err=True)
        else:
            click.secho(
                f"Access denied for {path}. Redirected to {decision.path}.",
                fg="red",
                err=True,
            )
        sys.exit(1)
    app.navigator.navigate(path)


def _pretty_json(data) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "-"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _fail(message: str):
    click.secho(message, fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="cvbank")
@click.pass_context
def main(ctx: click.Context):
    """cvbank — keep your CV up to date; browse candidates as an admin."""
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        try:
            obj["settings"] = get_settings()
        except ValidationError as e:
            raise click.ClickException(f"Invalid configuration: {e}")
    configure_logging(obj["settings"].log_level)


def _invoke(obj: dict, coro_fn, *args):
    """Open the context, run the command body, map config errors."""

    async def body():
        async with _context(obj) as app:
            return await coro_fn(app, *args)

    try:
        return _run(body())
    except ConfigurationError as e:
        raise click.ClickException(str(e))


# ---------------------------------------------------------------------------
# Session commands
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
@click.pass_obj
def login(obj: dict, email: str, password: str):
    """Sign in with EMAIL."""
    _invoke(obj, _login_impl, email, password)


async def _login_impl(app: AppContext, email: str, password: str):
    _navigate(app, LOGIN_PATH)
    if not await app.gateway.login(email, password):
        _fail("Login failed: check your email and password.")
    state = app.cache.get()
    click.secho(f"Signed in as {state.user_name} ({state.role.value})", fg="green")
    click.echo(f"Landing page: {landing_path(state)}")


@main.command()
@click.argument("name")
@click.argument("email")
@click.password_option()
@click.pass_obj
def register(obj: dict, name: str, email: str, password: str):
    """Create an account for NAME with EMAIL and sign in."""
    _invoke(obj, _register_impl, name, email, password)


async def _register_impl(app: AppContext, name: str, email: str, password: str):
    _navigate(app, REGISTER_PATH)
    if not await app.gateway.register(name, email, password):
        _fail("Registration failed: the email may already be registered.")
    state = app.cache.get()
    click.secho(f"Welcome, {state.user_name}!", fg="green")
    click.echo(f"Landing page: {landing_path(state)}")


@main.command()
@click.pass_obj
def logout(obj: dict):
    """Sign out and forget the local session."""
    _invoke(obj, _logout_impl)


async def _logout_impl(app: AppContext):
    await app.gateway.logout()
    click.echo("Signed out.")


@main.command()
@click.pass_obj
def whoami(obj: dict):
    """Show the signed-in user."""
    _invoke(obj, _whoami_impl)


async def _whoami_impl(app: AppContext):
    state = app.cache.get()
    if state is None:
        click.echo("Not signed in.")
        return
    click.echo(f"{state.user_name} <{state.user_id}> role={state.role.value}")


@main.command()
@click.pass_obj
def profile(obj: dict):
    """Print your whole profile as JSON."""
    _invoke(obj, _profile_impl)


async def _profile_impl(app: AppContext):
    _navigate(app, USER_LANDING_PATH)
    own = await app.profiles.get_own_profile()
    click.echo(_pretty_json(own.model_dump(mode="json")))


# ---------------------------------------------------------------------------
# cvbank experience
# ---------------------------------------------------------------------------


@main.group()
def experience():
    """Manage your professional experience."""


@experience.command("add")
@click.option("--company", required=True)
@click.option("--role", required=True)
@click.option("--country", default="")
@click.option("--start", "start_date", required=True, type=click.DateTime(["%Y-%m-%d"]))
@click.option("--end", "end_date", type=click.DateTime(["%Y-%m-%d"]))
@click.option("--current", is_flag=True, help="You still work here (clears --end)")
@click.option("--description", default="")
@click.pass_obj
def experience_add(obj: dict, company: str, role: str, country: str,
                   start_date: datetime, end_date: Optional[datetime],
                   current: bool, description: str):
    """Add an experience entry."""
    data = ExperienceCreate(
        company=company,
        role=role,
        country=country,
        start_date=start_date.date(),
        end_date=end_date.date() if end_date else None,
        is_current=current,
        description=description,
    )
    _invoke(obj, _experience_add_impl, data)


async def _experience_add_impl(app: AppContext, data: ExperienceCreate):
    _navigate(app, EXPERIENCE_PATH)
    new_id = await app.profiles.add_professional_experience(data)
    if new_id is None:
        _fail("Could not save the experience.")
    click.secho(f"Added experience {new_id}", fg="green")


@experience.command("list")
@click.pass_obj
def experience_list(obj: dict):
    """List your experience, newest first."""
    _invoke(obj, _experience_list_impl)


async def _experience_list_impl(app: AppContext):
    _navigate(app, EXPERIENCE_PATH)
    items = await app.profiles.get_professional_experiences()
    rows = [
        {
            "id": e.id,
            "company": e.company,
            "role": e.role,
            "start": e.start_date.isoformat(),
            "end": "current" if e.is_current else (e.end_date.isoformat() if e.end_date else "-"),
        }
        for e in items
    ]
    _print_table(rows, [
        ("ID", "id", 32), ("Company", "company", 20), ("Role", "role", 20),
        ("Start", "start", 10), ("End", "end", 10),
    ])


@experience.command("delete")
@click.argument("entity_id")
@click.pass_obj
def experience_delete(obj: dict, entity_id: str):
    """Delete the experience ENTITY_ID."""
    _invoke(obj, _delete_impl, EXPERIENCE_PATH, "delete_professional_experience", entity_id)


async def _delete_impl(app: AppContext, path: str, method: str, entity_id: str):
    _navigate(app, path)
    if not await getattr(app.profiles, method)(entity_id):
        _fail(f"Could not delete {entity_id}.")
    click.secho(f"Deleted {entity_id}", fg="green")


# ---------------------------------------------------------------------------
# cvbank language
# ---------------------------------------------------------------------------


@main.group()
def language():
    """Manage your languages."""


@language.command("add")
@click.argument("name")
@click.option(
    "--level",
    required=True,
    type=click.Choice([lvl.value for lvl in LanguageLevel], case_sensitive=False),
)
@click.pass_obj
def language_add(obj: dict, name: str, level: str):
    """Add language NAME at --level."""
    level = next(lvl for lvl in LanguageLevel if lvl.value.lower() == level.lower())
    _invoke(obj, _language_add_impl, LanguageCreate(name=name, level=level))


async def _language_add_impl(app: AppContext, data: LanguageCreate):
    _navigate(app, LANGUAGES_PATH)
    new_id = await app.profiles.add_language(data)
    if new_id is None:
        _fail("Could not save the language.")
    click.secho(f"Added language {new_id}", fg="green")


@language.command("list")
@click.pass_obj
def language_list(obj: dict):
    """List your languages."""
    _invoke(obj, _language_list_impl)


async def _language_list_impl(app: AppContext):
    _navigate(app, LANGUAGES_PATH)
    items = await app.profiles.get_languages()
    rows = [{"id": lang.id, "name": lang.name, "level": lang.level.value} for lang in items]
    _print_table(rows, [("ID", "id", 32), ("Language", "name", 20), ("Level", "level", 12)])


@language.command("delete")
@click.argument("entity_id")
@click.pass_obj
def language_delete(obj: dict, entity_id: str):
    """Delete the language ENTITY_ID."""
    _invoke(obj, _delete_impl, LANGUAGES_PATH, "delete_language", entity_id)


# ---------------------------------------------------------------------------
# cvbank tool
# ---------------------------------------------------------------------------


@main.group()
def tool():
    """Manage your tools and skills."""


@tool.command("add")
@click.argument("name")
@click.option("--category", default="")
@click.pass_obj
def tool_add(obj: dict, name: str, category: str):
    """Add tool NAME."""
    _invoke(obj, _tool_add_impl, ToolCreate(name=name, category=category))


async def _tool_add_impl(app: AppContext, data: ToolCreate):
    _navigate(app, TOOLS_PATH)
    new_id = await app.profiles.add_tool(data)
    if new_id is None:
        _fail("Could not save the tool.")
    click.secho(f"Added tool {new_id}", fg="green")


@tool.command("list")
@click.pass_obj
def tool_list(obj: dict):
    """List your tools."""
    _invoke(obj, _tool_list_impl)


async def _tool_list_impl(app: AppContext):
    _navigate(app, TOOLS_PATH)
    items = await app.profiles.get_tools()
    rows = [{"id": t.id, "name": t.name, "category": t.category} for t in items]
    _print_table(rows, [("ID", "id", 32), ("Tool", "name", 20), ("Category", "category", 16)])


@tool.command("delete")
@click.argument("entity_id")
@click.pass_obj
def tool_delete(obj: dict, entity_id: str):
    """Delete the tool ENTITY_ID."""
    _invoke(obj, _delete_impl, TOOLS_PATH, "delete_tool", entity_id)


# ---------------------------------------------------------------------------
# cvbank admin
# ---------------------------------------------------------------------------


@main.group()
def admin():
    """Browse candidates (administrators only)."""


@admin.command("users")
@click.option("--search", "-s", default="", help="Match name, email or skill")
@click.option("--experience", "-e", "experience_range", default="all",
              help='Years of experience: "all", "3-5" or "11+"')
@click.pass_obj
def admin_users(obj: dict, search: str, experience_range: str):
    """List candidates."""
    if experience_range != "all":
        try:
            analytics.parse_experience_range(experience_range)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--experience")
    _invoke(obj, _admin_users_impl, search, experience_range)


async def _admin_users_impl(app: AppContext, search: str, experience_range: str):
    _navigate(app, ADMIN_USERS_PATH)
    profiles = await app.profiles.list_all_user_profiles()
    candidates = analytics.filter_candidates(
        analytics.candidate_summaries(profiles), search, experience_range
    )
    click.secho(f"Candidates ({len(candidates)}):", bold=True)
    rows = [
        {
            "id": c.id,
            "name": c.name,
            "email": c.email,
            "years": c.experience_years,
            "skills": ", ".join(c.skills),
        }
        for c in candidates
    ]
    _print_table(rows, [
        ("ID", "id", 32), ("Name", "name", 20), ("Email", "email", 28),
        ("Years", "years", 5), ("Skills", "skills", 30),
    ])


@admin.command("stats")
@click.pass_obj
def admin_stats(obj: dict):
    """Dashboard numbers: candidates, experience spread, top skills."""
    _invoke(obj, _admin_stats_impl)


async def _admin_stats_impl(app: AppContext):
    _navigate(app, ADMIN_LANDING_PATH)
    stats = analytics.dashboard_stats(await app.profiles.list_all_user_profiles())
    click.secho(f"Total candidates: {stats.total_candidates}", bold=True)
    click.secho("Experience:", bold=True)
    for bucket, count in stats.experience_distribution.items():
        click.echo(f"  {bucket:<14} {count}")
    click.secho("Top skills:", bold=True)
    for skill in stats.top_skills:
        click.echo(f"  {skill.name:<20} {skill.count}")


@admin.command("profile")
@click.argument("user_id")
@click.pass_obj
def admin_profile(obj: dict, user_id: str):
    """Print the profile of USER_ID as JSON."""
    _invoke(obj, _admin_profile_impl, user_id)


async def _admin_profile_impl(app: AppContext, user_id: str):
    _navigate(app, f"{ADMIN_USERS_PATH}/{user_id}")
    found = await app.profiles.get_profile_for_user(user_id)
    if found is None:
        _fail(f"User {user_id} not found.")
    click.echo(_pretty_json(found.model_dump(mode="json")))


# ---------------------------------------------------------------------------
# cvbank serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: CVBANK_HOST)")
@click.option("--port", default=None, type=int, help="Port (default: CVBANK_PORT)")
@click.pass_obj
def serve(obj: dict, host: Optional[str], port: Optional[int]):
    """Run the provider service (the rest backend's server side)."""
    import uvicorn

    settings = obj["settings"]
    uvicorn.run(
        "cvbank.main:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
