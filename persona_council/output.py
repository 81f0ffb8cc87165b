"""Rich console output and markdown file save for council rounds."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from persona_council.events import (
    AnswerEvent,
    CompleteEvent,
    CouncilEvent,
    ErrorEvent,
    PhaseEvent,
    VoteEvent,
    WinnerEvent,
)
from persona_council.models import ACTIVE, CouncilResult, Persona, RunDetail, RunSummary

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of a text."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


class EventRenderer:
    """Folds the progress stream into console output as events arrive."""

    def __init__(self, out: Console | None = None) -> None:
        self.console = out or console
        self.names: dict[str, str] = {}
        self.result: CouncilResult | None = None
        self.error: str | None = None

    def __call__(self, event: CouncilEvent) -> None:
        if isinstance(event, PhaseEvent):
            self.console.print(Rule(f"[bold cyan]{event.message}[/bold cyan]"))
        elif isinstance(event, AnswerEvent):
            self.names[event.persona_id] = event.persona_name
            self.console.print(
                Panel(
                    _preview(event.answer),
                    title=f"[bold]{event.persona_name}[/bold]",
                    subtitle=f"{event.current}/{event.total}",
                    border_style="dim",
                )
            )
        elif isinstance(event, VoteEvent):
            if event.voted_for_name:
                target = f"[green]{event.voted_for_name}[/green]"
            else:
                target = "[yellow]no valid vote[/yellow]"
            self.console.print(
                f"[dim]{event.current}/{event.total}[/dim] [bold]{event.persona_name}[/bold] -> {target}"
            )
            if event.vote_explanation:
                self.console.print(Text(f"    {_preview(event.vote_explanation, 30)}", style="dim"))
        elif isinstance(event, WinnerEvent):
            winner = self.names.get(event.winner_id, event.winner_id)
            self.console.print(f"\n[bold green]Winner:[/bold green] {winner}")
        elif isinstance(event, CompleteEvent):
            self.result = event.result
            print_result(event.result, self.console)
        elif isinstance(event, ErrorEvent):
            self.error = event.error
            self.console.print(f"[bold red]Error:[/bold red] {event.error}")


def print_result(result: CouncilResult, out: Console | None = None) -> None:
    """Print vote counts and the winning answer."""
    out = out or console
    table = Table(title="Council Votes", show_lines=False)
    table.add_column("Persona", style="bold")
    table.add_column("Votes", justify="right")
    table.add_column("Voted for")
    names = {p.persona_id: p.name for p in result.personas}
    for p in result.personas:
        marker = " *" if p.is_winner else ""
        table.add_row(
            f"{p.name}{marker}",
            str(result.vote_counts.get(p.persona_id, 0)),
            names.get(p.voted_for, "-") if p.voted_for else "-",
        )
    out.print(table)

    winner = names.get(result.winner_id, result.winner_id)
    out.print(Rule(f"[bold green]Winning answer: {winner}[/bold green]"))
    out.print(Markdown(result.answer or "_(empty answer)_"))
    out.print(
        Text(f"Run: {result.run_id} | Credits left: {result.credits_left}", style="dim")
    )


def print_personas(personas: list[Persona], out: Console | None = None) -> None:
    out = out or console
    table = Table(title="Personas")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Runs", justify="right")
    table.add_column("Wins", justify="right")
    table.add_column("Vote score", justify="right")
    for p in personas:
        status = "[green]active[/green]" if p.status == ACTIVE else "[dim]inactive[/dim]"
        table.add_row(p.name, status, str(p.runs), str(p.wins), str(p.vote_score))
    out.print(table)


def print_runs(runs: list[RunSummary], out: Console | None = None) -> None:
    out = out or console
    if not runs:
        out.print("No runs yet.")
        return
    table = Table(title="Recent runs")
    table.add_column("Run", no_wrap=True)
    table.add_column("When")
    table.add_column("Question")
    table.add_column("Winning answer")
    for r in runs:
        table.add_row(r.id, r.created_at[:19], _preview(r.user_query, 12), _preview(r.winner_answer, 20))
    out.print(table)


def print_run(run: RunDetail, out: Console | None = None) -> None:
    out = out or console
    names = {p.persona_id: p.name for p in run.personas}
    out.print(Rule(f"[bold cyan]{run.user_query}[/bold cyan]"))
    for p in run.personas:
        voted = names.get(p.voted_for, "-") if p.voted_for else "-"
        title = f"[bold]{p.name}[/bold]" + (" [green](winner)[/green]" if p.is_winner else "")
        out.print(
            Panel(
                _preview(p.answer, 80),
                title=title,
                subtitle=f"votes: {run.vote_counts.get(p.persona_id, 0)} | voted for: {voted}",
                border_style="green" if p.is_winner else "dim",
            )
        )


def save_to_file(question: str, result: CouncilResult, output_dir: Path) -> Path:
    """Save the round as a markdown transcript.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(question)}.md"

    names = {p.persona_id: p.name for p in result.personas}
    winner = names.get(result.winner_id, result.winner_id)

    lines: list[str] = [
        f"# Persona Council: {question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Panel:** {', '.join(p.name for p in result.personas)}",
        f"**Winner:** {winner}",
        f"**Run:** {result.run_id}",
        "",
        "---",
        "",
        "## Answers",
        "",
    ]

    for p in result.personas:
        votes = result.vote_counts.get(p.persona_id, 0)
        lines.append(f"### {p.name}" + (" (winner)" if p.is_winner else ""))
        lines.append("")
        lines.append(p.answer)
        lines.append("")
        lines.append(f"*Votes received: {votes}*")
        lines.append("")

    lines += ["## Votes", ""]
    for p in result.personas:
        target = names.get(p.voted_for, "") if p.voted_for else ""
        explanation = p.vote_explanation or "-"
        lines.append(f"- **{p.name}** -> {target or 'no valid vote'}: {explanation}")
    lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
