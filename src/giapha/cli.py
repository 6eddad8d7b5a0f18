"""CLI interface for the Gia Pha family registry."""

import json
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .caller import Caller, Role
from .config import RegistryConfig
from .contributions import ContributionKind, ContributionStatus
from .exceptions import RegistryError
from .graph import Gender, SpouseRole
from .logging import configure_logging
from .registry import FamilyRegistry

app = typer.Typer(
    name="giapha",
    help="Gia Pha family registry: family graph, contributions and review",
    add_completion=False,
)
person_app = typer.Typer(help="Create, inspect and delete persons", add_completion=False)
family_app = typer.Typer(help="Create families and edit their links", add_completion=False)
app.add_typer(person_app, name="person")
app.add_typer(family_app, name="family")

console = Console()

DB_OPTION = typer.Option(None, "--db", help="SQLite database path (default: GIAPHA_DB_PATH)")
USER_OPTION = typer.Option("cli", "--user", "-u", help="Acting user id")
ROLE_OPTION = typer.Option(Role.ADMIN, "--role", "-r", help="Acting user role")


def get_config() -> RegistryConfig:
    """Load configuration from environment."""
    from dotenv import load_dotenv

    load_dotenv()
    config = RegistryConfig.from_env()
    configure_logging(config.log_level)
    return config


@contextmanager
def open_registry(db: Path | None):
    """Open the registry and turn registry errors into a red message and exit code 1."""
    config = get_config()
    registry = FamilyRegistry.open(db or config.db_path, config)
    try:
        yield registry
    except RegistryError as exc:
        console.print(f"[red]Error ({exc.code}): {exc}[/red]")
        raise typer.Exit(1) from None
    finally:
        registry.close()


def _person_table(title: str, people) -> Table:
    table = Table(title=title)
    table.add_column("Handle", style="dim")
    table.add_column("Name")
    table.add_column("Gen")
    table.add_column("Gender")
    table.add_column("Born")
    table.add_column("Living")
    for p in people:
        table.add_row(
            p.handle,
            p.display_name,
            str(p.generation),
            p.gender.value,
            str(p.birth_date or p.birth_year or ""),
            "yes" if p.is_living else "no",
        )
    return table


@app.command()
def init(db: Path = DB_OPTION):
    """Create the registry database if it does not exist."""
    with open_registry(db) as registry:
        console.print(f"[green]Registry ready at {registry.db.db_path}[/green]")


@app.command()
def check(db: Path = DB_OPTION):
    """Verify that person and family links mirror each other."""
    with open_registry(db) as registry:
        problems = registry.check()
    if problems:
        for problem in problems:
            console.print(f"[red]{problem}[/red]")
        console.print(f"[red]{len(problems)} integrity problem(s)[/red]")
        raise typer.Exit(1)
    console.print("[green]Graph is consistent[/green]")


# =============================================================================
# Persons
# =============================================================================


@person_app.command("add")
def person_add(
    name: str = typer.Argument(..., help="Display name"),
    generation: int = typer.Option(..., "--generation", "-g", help="Generation number (>= 1)"),
    gender: Gender = typer.Option(Gender.UNKNOWN, "--gender", help="Gender"),
    birth_date: str = typer.Option(None, "--birth-date", help="YYYY-MM-DD"),
    birth_year: int = typer.Option(None, "--birth-year", help="Birth year when the date is unknown"),
    deceased: bool = typer.Option(False, "--deceased", help="Mark the person as not living"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Add a person with a freshly minted handle."""
    caller = Caller(user_id=user, role=role)
    fields = {
        "display_name": name,
        "gender": gender,
        "generation": generation,
        "birth_date": birth_date,
        "birth_year": birth_year,
        "is_living": not deceased,
    }
    with open_registry(db) as registry:
        person = registry.create_person(caller, fields)
    console.print(f"[green]Created {person.handle}[/green] {person.display_name}")


@person_app.command("list")
def person_list(db: Path = DB_OPTION):
    """List persons by generation."""
    with open_registry(db) as registry:
        people = registry.list_people()
    console.print(_person_table("Persons", people))
    console.print(f"[dim]{len(people)} persons[/dim]")


@person_app.command("show")
def person_show(
    handle: str = typer.Argument(..., help="Person handle, e.g. P001"),
    db: Path = DB_OPTION,
):
    """Show one person and its family links."""
    with open_registry(db) as registry:
        person = registry.get_person(handle)
    if person is None:
        console.print(f"[yellow]No person {handle}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"{person.handle} {person.display_name}")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in person.model_dump(exclude={"handle", "created_at", "updated_at"}).items():
        if value in (None, [], ""):
            continue
        if isinstance(value, list):
            value = ", ".join(value)
        table.add_row(key, str(value.value if isinstance(value, Gender) else value))
    console.print(table)


@person_app.command("delete")
def person_delete(
    handle: str = typer.Argument(..., help="Person handle"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Delete a person no family references."""
    with open_registry(db) as registry:
        registry.delete_person(Caller(user_id=user, role=role), handle)
    console.print(f"[green]Deleted {handle}[/green]")


# =============================================================================
# Families
# =============================================================================


@family_app.command("add")
def family_add(
    father: str = typer.Option(None, "--father", help="Father handle"),
    mother: str = typer.Option(None, "--mother", help="Mother handle"),
    child: list[str] = typer.Option(None, "--child", "-c", help="Child handle (repeatable)"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Create a family linking parents and children."""
    with open_registry(db) as registry:
        family = registry.add_family(
            Caller(user_id=user, role=role),
            father_handle=father,
            mother_handle=mother,
            children=list(child or []),
        )
    console.print(f"[green]Created {family.handle}[/green]")


@family_app.command("add-child")
def family_add_child(
    family: str = typer.Argument(..., help="Family handle"),
    person: str = typer.Argument(..., help="Child handle"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Add a child to a family."""
    with open_registry(db) as registry:
        registry.add_child_to_family(Caller(user_id=user, role=role), person, family)
    console.print(f"[green]{person} is now a child of {family}[/green]")


@family_app.command("remove-child")
def family_remove_child(
    family: str = typer.Argument(..., help="Family handle"),
    person: str = typer.Argument(..., help="Child handle"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Remove a child from a family."""
    with open_registry(db) as registry:
        registry.remove_child_from_family(Caller(user_id=user, role=role), person, family)
    console.print(f"[green]{person} removed from {family}[/green]")


@family_app.command("add-spouse")
def family_add_spouse(
    family: str = typer.Argument(..., help="Family handle"),
    person: str = typer.Argument(..., help="Spouse handle"),
    as_role: SpouseRole = typer.Option(..., "--as", help="Parent slot to fill"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Put a person in the father or mother slot of a family."""
    with open_registry(db) as registry:
        registry.add_spouse_to_family(Caller(user_id=user, role=role), person, family, as_role)
    console.print(f"[green]{person} is now {as_role.value} of {family}[/green]")


@family_app.command("remove-spouse")
def family_remove_spouse(
    family: str = typer.Argument(..., help="Family handle"),
    person: str = typer.Argument(..., help="Spouse handle"),
    as_role: SpouseRole = typer.Option(..., "--as", help="Parent slot to clear"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Clear the father or mother slot held by a person."""
    with open_registry(db) as registry:
        registry.remove_spouse_from_family(Caller(user_id=user, role=role), person, family, as_role)
    console.print(f"[green]{person} removed as {as_role.value} of {family}[/green]")


@family_app.command("move-child")
def family_move_child(
    person: str = typer.Argument(..., help="Child handle"),
    source: str = typer.Argument(..., help="Current family handle"),
    target: str = typer.Argument(..., help="New family handle"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Move a child from one family to another in a single step."""
    with open_registry(db) as registry:
        registry.move_child_to_family(Caller(user_id=user, role=role), person, source, target)
    console.print(f"[green]{person} moved from {source} to {target}[/green]")


@family_app.command("reorder")
def family_reorder(
    family: str = typer.Argument(..., help="Family handle"),
    children: list[str] = typer.Argument(..., help="Every child handle, eldest first"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Set the birth order of a family's children."""
    with open_registry(db) as registry:
        updated = registry.reorder_children(Caller(user_id=user, role=role), family, children)
    console.print(f"[green]{family} children: {', '.join(updated.children)}[/green]")


# =============================================================================
# Contributions
# =============================================================================


@app.command()
def contribute(
    kind: ContributionKind = typer.Argument(..., help="Contribution kind"),
    payload: str = typer.Argument(..., help="JSON payload (or a handle for delete_person)"),
    person_handle: str = typer.Option(None, "--person", "-p", help="Person the contribution is about"),
    person_name: str = typer.Option(None, "--person-name", help="Display name of that person"),
    label: str = typer.Option(None, "--label", help="Human readable field label"),
    note: str = typer.Option(None, "--note", help="Note to the reviewer"),
    email: str = typer.Option(None, "--email", help="Author email"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = typer.Option(Role.MEMBER, "--role", "-r", help="Acting user role"),
):
    """Submit a contribution for review."""
    author = Caller(user_id=user, role=role, email=email)
    with open_registry(db) as registry:
        contribution = registry.submit(
            author,
            kind.value,
            payload,
            person_handle=person_handle,
            person_name=person_name,
            field_label=label,
            note=note,
        )
    console.print(f"[green]Submitted {contribution.id}[/green] ({contribution.field_name})")


@app.command("contributions")
def list_contributions(
    status: str = typer.Option(None, "--status", "-s", help="Filter by status"),
    author: str = typer.Option(None, "--author", help="Filter by author id"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum results"),
    db: Path = DB_OPTION,
):
    """List contributions, newest first."""
    status_filter = None
    if status:
        try:
            status_filter = ContributionStatus(status.lower())
        except ValueError:
            console.print(f"[red]Invalid status. Choose from: {[s.value for s in ContributionStatus]}[/red]")
            raise typer.Exit(1)

    with open_registry(db) as registry:
        contributions = registry.queue.list(status=status_filter, author_id=author, limit=limit)

    table = Table(title="Contributions")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Person")
    table.add_column("Status")
    table.add_column("Applied")
    for c in contributions:
        table.add_row(
            c.id,
            c.field_name,
            c.person_handle or "",
            c.status.value,
            "yes" if c.is_applied else "",
        )
    console.print(table)
    console.print(f"[dim]Showing {len(contributions)} contributions[/dim]")


@app.command()
def review(
    contribution_id: str = typer.Argument(..., help="Contribution id"),
    decision: ContributionStatus = typer.Argument(..., help="approved or rejected"),
    note: str = typer.Option(None, "--note", help="Admin note"),
    apply_now: bool = typer.Option(True, "--apply/--no-apply", help="Apply right after approving"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Approve or reject a pending contribution."""
    reviewer = Caller(user_id=user, role=role)
    with open_registry(db) as registry:
        if decision is ContributionStatus.APPROVED and apply_now:
            result = registry.approve_and_apply(contribution_id, reviewer, note)
        else:
            registry.decide(contribution_id, decision, reviewer, note)
            result = None
    console.print(f"[green]{contribution_id} {decision.value}[/green]")
    if result is not None:
        _print_result(result.to_dict())


@app.command("apply")
def apply_contribution(
    contribution_id: str = typer.Argument(..., help="Contribution id"),
    db: Path = DB_OPTION,
    user: str = USER_OPTION,
    role: Role = ROLE_OPTION,
):
    """Apply an approved contribution to the graph."""
    with open_registry(db) as registry:
        result = registry.apply(contribution_id, Caller(user_id=user, role=role))
    _print_result(result.to_dict())
    if not result.ok:
        raise typer.Exit(1)


def _print_result(data: dict) -> None:
    style = "green" if data.get("ok") else "red"
    console.print(Panel(json.dumps(data, ensure_ascii=False, indent=2), title="Apply result", style=style))


@app.command()
def audit(
    entity: str = typer.Option(None, "--entity", "-e", help="Filter by entity id"),
    action: str = typer.Option(None, "--action", "-a", help="Filter by action"),
    limit: int = typer.Option(20, "--limit", "-l", help="Maximum results"),
    db: Path = DB_OPTION,
):
    """Show the audit trail, newest first."""
    with open_registry(db) as registry:
        try:
            entries = registry.audit.list(entity_id=entity, action=action.upper() if action else None, limit=limit)
        except ValueError:
            console.print(f"[red]Invalid action: {action}[/red]")
            raise typer.Exit(1) from None

    table = Table(title="Audit log")
    table.add_column("When", style="dim")
    table.add_column("Actor")
    table.add_column("Action")
    table.add_column("Entity")
    table.add_column("Name")
    for entry in entries:
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.actor_id,
            entry.action.value,
            f"{entry.entity_type}:{entry.entity_id or ''}",
            entry.entity_name or "",
        )
    console.print(table)
    console.print(f"[dim]Showing {len(entries)} entries[/dim]")


if __name__ == "__main__":
    app()
