"""CLI interface for the family graph engine."""

import asyncio
import dataclasses
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .config import EngineConfig
from .engine import FamilyGraphEngine, build_engine
from .exceptions import FamilyGraphError
from .logging import configure_logging
from .models import Gender, Individual, IndividualDraft, PedigreeEntry, TreeNode

app = typer.Typer(
    name="family-graph",
    help="Genealogical relationship engine",
    add_completion=False,
)
console = Console()

DbOption = typer.Option(None, "--db", help="SQLite file (defaults to FAMILY_GRAPH_SQLITE_PATH)")


def get_config(db: Path | None = None) -> EngineConfig:
    """Load configuration from environment and an optional .env file."""
    from dotenv import load_dotenv

    load_dotenv()
    config = EngineConfig.from_env()
    configure_logging(config.log_level.upper(), cache=False)
    if db is not None:
        config = dataclasses.replace(config, sqlite_path=str(db))
    return config


def run(db: Path | None, action):
    """Run ``action(engine)`` on a fresh engine; engine errors exit with code 1."""

    async def main():
        async with build_engine(get_config(db)) as engine:
            return await action(engine)

    try:
        return asyncio.run(main())
    except FamilyGraphError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def _lifespan(individual: Individual) -> str:
    birth = individual.birth_date.isoformat() if individual.birth_date else "?"
    if individual.death_date:
        return f"{birth} - {individual.death_date.isoformat()}"
    return birth if individual.birth_date else ""


def _label(individual: Individual) -> str:
    return f"[bold]{individual.full_name}[/bold] [dim]#{individual.id} {individual.gender.value}[/dim]"


def _individual_table(title: str, individuals: list[Individual]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Gender")
    table.add_column("Life")
    for individual in individuals:
        table.add_row(str(individual.id), individual.full_name, individual.gender.value, _lifespan(individual))
    return table


def _pedigree_table(title: str, entries: list[PedigreeEntry]) -> Table:
    table = Table(title=title)
    table.add_column("Gen", justify="right")
    table.add_column("Relationship")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Line")
    for entry in entries:
        table.add_row(
            str(entry.generation),
            entry.relationship_label,
            str(entry.individual.id),
            entry.individual.full_name,
            entry.lineage or "",
        )
    return table


def _render_tree(node: TreeNode, branch: Tree | None = None) -> Tree:
    label = _label(node.individual)
    if node.spouse is not None:
        label += f" [magenta]+ {node.spouse.full_name}[/magenta]"
    current = Tree(label) if branch is None else branch.add(label)
    for child in node.children:
        _render_tree(child, current)
    return current


@app.command()
def demo(db: Path = DbOption):
    """Seed the database with a sample family spanning several marriages."""

    async def seed(engine: FamilyGraphEngine):
        def person(name, gender, born=None, **parents):
            return IndividualDraft(full_name=name, gender=gender, birth_date=born, **parents)

        abraham = await engine.create_individual(person("Abraham", Gender.MALE))
        sarah = await engine.create_individual(person("Sarah", Gender.FEMALE))
        hagar = await engine.create_individual(person("Hagar", Gender.FEMALE))
        keturah = await engine.create_individual(person("Keturah", Gender.FEMALE))
        for wife in (sarah, hagar, keturah):
            await engine.add_spouse(abraham.id, wife.id)

        await engine.create_individual(person("Ishmael", Gender.MALE, "1910-01-01", father_id=abraham.id, mother_id=hagar.id))
        isaac = await engine.create_individual(person("Isaac", Gender.MALE, "1924-01-01", father_id=abraham.id, mother_id=sarah.id))
        await engine.create_individual(person("Midian", Gender.MALE, "1940-01-01", father_id=abraham.id, mother_id=keturah.id))

        rebekah = await engine.create_individual(person("Rebekah", Gender.FEMALE))
        await engine.add_spouse(isaac.id, rebekah.id)
        await engine.create_individual(person("Esau", Gender.MALE, "1964-01-01", father_id=isaac.id, mother_id=rebekah.id))
        await engine.create_individual(person("Jacob", Gender.MALE, "1964-01-02", father_id=isaac.id, mother_id=rebekah.id))
        return abraham

    root = run(db, seed)
    console.print(Panel(f"Seeded sample family. Root individual: [bold]#{root.id}[/bold] {root.full_name}"))


@app.command()
def show(individual_id: int = typer.Argument(..., help="Individual ID"), db: Path = DbOption):
    """Show an individual with parents, spouses and children."""

    async def load(engine: FamilyGraphEngine):
        individual = await engine.get_individual(individual_id)
        parents = await engine.get_parents(individual_id)
        spouses = await engine.get_spouses(individual_id)
        children = await engine.get_children(individual_id)
        return individual, parents, spouses, children

    individual, parents, spouses, children = run(db, load)

    lines = [f"Gender: {individual.gender.value}", f"Life: {_lifespan(individual) or 'unknown'}"]
    if individual.occupation:
        lines.append(f"Occupation: {individual.occupation}")
    lines.append(f"Father: {parents.father.full_name if parents.father else '-'}")
    lines.append(f"Mother: {parents.mother.full_name if parents.mother else '-'}")
    console.print(Panel("\n".join(lines), title=f"[bold]{individual.full_name}[/bold] #{individual.id}"))

    if spouses:
        table = Table(title="Spouses")
        table.add_column("Order", justify="right")
        table.add_column("Union", style="dim")
        table.add_column("Name")
        for record in spouses:
            table.add_row(str(record.marriage_order), str(record.union_id), record.spouse.full_name)
        console.print(table)
    if children:
        console.print(_individual_table("Children", children))


@app.command()
def tree(
    root_id: int = typer.Argument(..., help="Root individual ID"),
    generations: int = typer.Option(0, "--generations", "-g", help="Depth (0 uses the default)"),
    db: Path = DbOption,
):
    """Print the descendant tree of an individual."""
    node = run(db, lambda engine: engine.build_tree(root_id, generations))
    console.print(_render_tree(node))
    console.print(f"[dim]{node.count()} individuals[/dim]")


@app.command()
def ancestors(
    individual_id: int = typer.Argument(..., help="Individual ID"),
    generations: int = typer.Option(0, "--generations", "-g", help="Depth (0 uses the default)"),
    db: Path = DbOption,
):
    """List ancestors of an individual."""
    entries = run(db, lambda engine: engine.get_ancestors(individual_id, generations))
    if not entries:
        console.print("[yellow]No ancestors recorded[/yellow]")
        return
    console.print(_pedigree_table("Ancestors", entries))


@app.command()
def descendants(
    individual_id: int = typer.Argument(..., help="Individual ID"),
    generations: int = typer.Option(0, "--generations", "-g", help="Depth (0 uses the default)"),
    db: Path = DbOption,
):
    """List descendants of an individual."""
    entries = run(db, lambda engine: engine.get_descendants(individual_id, generations))
    if not entries:
        console.print("[yellow]No descendants recorded[/yellow]")
        return
    console.print(_pedigree_table("Descendants", entries))


@app.command()
def spouses(individual_id: int = typer.Argument(..., help="Individual ID"), db: Path = DbOption):
    """List spouses in marriage order."""
    records = run(db, lambda engine: engine.get_spouses(individual_id))
    table = Table(title="Spouses")
    table.add_column("Order", justify="right")
    table.add_column("Union", style="dim")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    for record in records:
        table.add_row(str(record.marriage_order), str(record.union_id), str(record.spouse.id), record.spouse.full_name)
    console.print(table)


@app.command()
def siblings(individual_id: int = typer.Argument(..., help="Individual ID"), db: Path = DbOption):
    """List full and half siblings."""
    found = run(db, lambda engine: engine.get_siblings(individual_id))
    console.print(_individual_table("Siblings", found))


@app.command()
def search(
    term: str = typer.Argument(..., help="Search term"),
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum results"),
    offset: int = typer.Option(0, "--offset", help="Results to skip"),
    db: Path = DbOption,
):
    """Search individuals by name or notes."""
    page = run(db, lambda engine: engine.search_individuals(term, limit, offset))
    if not page.items:
        console.print(f"[yellow]No individuals found matching '{term}'[/yellow]")
        return
    console.print(_individual_table("Individuals", page.items))
    console.print(f"[dim]Showing {len(page.items)} of {page.total}[/dim]")


if __name__ == "__main__":
    app()
