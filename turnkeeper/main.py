"""Command line entry point for Turnkeeper."""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from turnkeeper.assessor import CompletionAssessor, Verdict
from turnkeeper.checkpoint import CheckpointConfig, load_checkpoint_config
from turnkeeper.config import Config, ProviderCredentials, set_config
from turnkeeper.llm.selector import resolve_provider
from turnkeeper.logging import configure_logging

app = typer.Typer(help="Turnkeeper - continuation control for long-running agent sessions")
console = Console()


def _setup(config_path: str, verbose: bool) -> Config:
    cfg = Config.from_yaml(Path(config_path)) if config_path else Config.load()
    if verbose:
        cfg.logging.level = "DEBUG"
    set_config(cfg)
    configure_logging()
    return cfg


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}...{secret[-4:]}"


def _read_texts(files: list[Path] | None) -> list[str]:
    if not files:
        data = sys.stdin.read()
        return [data] if data.strip() else []
    return [path.read_text(encoding="utf-8") for path in files]


@app.command()
def assess(
    files: Optional[List[Path]] = typer.Argument(None, help="Assistant output files, oldest first (default: stdin)"),
    cwd: Path = typer.Option(Path("."), "--cwd", help="Directory holding the checkpoint store"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    """Ask the assessment provider whether the given output looks finished."""
    cfg = _setup(config, verbose)
    checkpoint = load_checkpoint_config(cwd, cfg.checkpoint.dir_name) or CheckpointConfig()
    texts = _read_texts(files)[-checkpoint.buffer_size:]

    if any(checkpoint.completion_marker in text for text in texts):
        console.print(f"[green]DONE[/green] (completion marker {checkpoint.completion_marker} present)")
        raise typer.Exit(code=0)

    assessor = CompletionAssessor(ProviderCredentials.from_env(), cfg.assessment)
    verdict = asyncio.run(assessor.judge(texts, checkpoint))
    color = {"DONE": "green", "NOT_DONE": "yellow"}.get(verdict.value, "red")
    console.print(f"[{color}]{verdict.value}[/{color}]")
    raise typer.Exit(code=0 if verdict is Verdict.DONE else 1)


@app.command()
def checkpoint(
    cwd: Path = typer.Option(Path("."), "--cwd", help="Directory holding the checkpoint store"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
) -> None:
    """Show the active checkpoint's smart-continue settings."""
    cfg = _setup(config, False)
    active = load_checkpoint_config(cwd, cfg.checkpoint.dir_name)
    if active is None:
        console.print("No active checkpoint; smart continue is disabled.")
        return

    table = Table(title="Smart continue")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in active.model_dump().items():
        table.add_row(name, "" if value is None else str(value))

    provider = resolve_provider(active, ProviderCredentials.from_env())
    if provider is None:
        table.add_row("resolved provider", "[red]none (no credentials)[/red]")
    else:
        table.add_row("resolved provider", provider.provider)
        table.add_row("resolved model", provider.model)
        table.add_row("base url", provider.base_url)
        table.add_row("api key", _mask(provider.api_key))
    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from turnkeeper import __version__
    console.print(f"Turnkeeper v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
