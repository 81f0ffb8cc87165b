"""Click CLI: config loading, store setup, council rounds, history and the API server."""

import asyncio
import logging
import random
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from persona_council.council import stream_council
from persona_council.errors import CouncilError, InsufficientCreditsError
from persona_council.events import encode_event
from persona_council.models import ACTIVE, INACTIVE, CouncilResult
from persona_council.output import (
    EventRenderer,
    print_personas,
    print_run,
    print_runs,
    save_to_file,
)
from persona_council.providers.base import AIProvider, ProviderError
from persona_council.providers.factory import build_provider
from persona_council.store import SQLiteCouncilStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# Exit code for "out of credits" so scripts can tell it apart from failures.
EXIT_NO_CREDITS = 2


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )


def open_store(config: AppConfig) -> SQLiteCouncilStore:
    """Open the database and seed configured personas that are missing."""
    store = SQLiteCouncilStore(
        config.defaults.database,
        starting_credits=config.defaults.starting_credits,
    )
    store.seed_personas(config.prompts.personas)
    return store


def _read_question(question: str | None, question_file: str | None) -> str:
    if question_file:
        return Path(question_file).read_text(encoding="utf-8").strip()
    if question:
        return question
    console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
    sys.exit(1)


async def _ask(
    question: str,
    user_id: str,
    store: SQLiteCouncilStore,
    provider: AIProvider,
    config: AppConfig,
    rng: random.Random | None,
    as_json: bool,
) -> CouncilResult | None:
    """Run one streamed round, printing events as they arrive."""
    stream = await stream_council(question, user_id, store, provider, config.prompts, rng=rng)
    renderer = EventRenderer(console)
    async for event in stream:
        if as_json:
            click.echo(encode_event(event), nl=False)
        else:
            renderer(event)
    return await stream.wait()


@click.group()
@click.option("--settings", "settings_path", type=click.Path(exists=True, dir_okay=False),
              default=None, help="Alternative settings.yaml")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, settings_path: str | None, verbose: bool) -> None:
    """Persona Council: ask a panel of AI personas, let them vote anonymously.

    \b
    Examples:
      persona-council ask "Should we rewrite the billing service?"
      persona-council ask --file question.md --save
      persona-council ask "REST or gRPC?" --json --seed 7
      persona-council personas --deactivate Ethicist
      persona-council history
      persona-council serve --port 8000
    """
    # Model answers may contain characters the legacy Windows console cannot encode.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config(Path(settings_path)) if settings_path else load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    ctx.obj = config


@main.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read question from a file")
@click.option("--user", "user_id", default=None, help="Credit account to charge (default: from config)")
@click.option("--provider", "provider_name", default=None, help="Model provider (default: from config)")
@click.option("--seed", type=int, default=None, help="Seed ballot shuffling for a reproducible round")
@click.option("--json", "as_json", is_flag=True, help="Print raw NDJSON progress events")
@click.option("--save", is_flag=True, help="Save a markdown transcript to the output directory")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.pass_obj
def ask(
    config: AppConfig,
    question: str | None,
    question_file: str | None,
    user_id: str | None,
    provider_name: str | None,
    seed: int | None,
    as_json: bool,
    save: bool,
    output_path: str | None,
) -> None:
    """Run one council round on QUESTION."""
    question_text = _read_question(question, question_file)
    effective_user = user_id or config.defaults.user_id
    store = open_store(config)

    try:
        provider = build_provider(config, provider_name)
    except ProviderError as exc:
        console.print(f"[bold red]Provider error:[/bold red] {exc}")
        sys.exit(1)

    rng = random.Random(seed) if seed is not None else None

    try:
        result = asyncio.run(
            _ask(question_text, effective_user, store, provider, config, rng, as_json)
        )
    except InsufficientCreditsError:
        console.print(
            "[bold red]Out of credits.[/bold red] Top up with: persona-council credits --add N"
        )
        sys.exit(EXIT_NO_CREDITS)
    except CouncilError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    if result is None:
        sys.exit(1)

    if save:
        output_dir = Path(output_path) if output_path else config.defaults.output_dir
        saved = save_to_file(question_text, result, output_dir)
        console.print(f"\n[dim]Saved to: {saved}[/dim]")


@main.command()
@click.option("--activate", "activate_name", metavar="NAME", default=None, help="Mark a persona active")
@click.option("--deactivate", "deactivate_name", metavar="NAME", default=None, help="Mark a persona inactive")
@click.pass_obj
def personas(config: AppConfig, activate_name: str | None, deactivate_name: str | None) -> None:
    """List personas with their cumulative stats."""
    store = open_store(config)
    for name, status in ((activate_name, ACTIVE), (deactivate_name, INACTIVE)):
        if name and store.set_persona_status(name, status) is None:
            console.print(f"[bold red]Error:[/bold red] Persona not found: {name}")
            sys.exit(1)
    print_personas(store.list_personas(), console)


@main.command()
@click.option("--limit", default=25, show_default=True, help="Number of runs to show")
@click.pass_obj
def history(config: AppConfig, limit: int) -> None:
    """Show recent council runs."""
    print_runs(open_store(config).list_runs(limit), console)


@main.command()
@click.argument("run_id")
@click.pass_obj
def show(config: AppConfig, run_id: str) -> None:
    """Show every persona's answer and vote for one run."""
    run = open_store(config).get_run(run_id)
    if run is None:
        console.print(f"[bold red]Error:[/bold red] Run not found: {run_id}")
        sys.exit(1)
    print_run(run, console)


@main.command()
@click.option("--user", "user_id", default=None, help="Credit account (default: from config)")
@click.option("--add", "amount", type=click.IntRange(min=1), default=None, help="Add credits")
@click.pass_obj
def credits(config: AppConfig, user_id: str | None, amount: int | None) -> None:
    """Show (or top up) a credit balance."""
    store = open_store(config)
    effective_user = user_id or config.defaults.user_id
    balance = store.add_credits(effective_user, amount) if amount else store.get_credits(effective_user)
    console.print(f"{effective_user}: [bold]{balance}[/bold] credit(s)")


@main.command()
@click.option("--host", default=None, help="Bind address (default: from config)")
@click.option("--port", default=None, type=int, help="Port (default: from config)")
@click.pass_obj
def serve(config: AppConfig, host: str | None, port: int | None) -> None:
    """Serve the HTTP API (JSON and NDJSON streaming)."""
    import uvicorn

    from persona_council.api import create_app

    try:
        app = create_app(config)
    except ProviderError as exc:
        console.print(f"[bold red]Provider error:[/bold red] {exc}")
        sys.exit(1)
    uvicorn.run(app, host=host or config.defaults.api_host, port=port or config.defaults.api_port)


if __name__ == "__main__":
    main()
