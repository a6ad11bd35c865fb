"""taskrunner status -- show the effective configuration and provider health."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from core.config import Config, ConfigError, load_config
from core.router import LLMRouter

console = Console()


def _config_table(cfg: Config) -> Table:
    table = Table(title="Effective configuration", show_header=False, box=None)
    table.add_column(style="dim", justify="right")
    table.add_column()

    loop = cfg.loop
    table.add_row("max_steps", str(loop.max_steps))
    table.add_row("step_delay", f"{loop.step_delay_seconds:g}s")
    duration = f"{loop.max_duration_seconds:g}s" if loop.max_duration_seconds else "unlimited"
    table.add_row("max_duration", duration)
    table.add_row("ai_timeout", f"{loop.ai_timeout_seconds:g}s")
    table.add_row("tool_timeout", f"{loop.tool_timeout_seconds:g}s")

    runner = cfg.runner
    plan = f"on ({runner.plan_max_attempts} attempts)" if runner.plan_enabled else "off"
    table.add_row("plan", plan)
    retry = runner.model_retry
    table.add_row(
        "model_retry",
        f"{retry.max_attempts} attempts, {retry.base_delay:g}s..{retry.max_delay:g}s",
    )
    table.add_row("retention", f"{runner.task_retention_seconds:g}s")

    enabled = [
        f"{name} ({p.default_model or 'no model'})"
        for name in cfg.llm.provider_priority
        if (p := cfg.llm.providers.get(name)) and p.enabled
    ]
    table.add_row("providers", ", ".join(enabled) or "[red]none[/]")
    return table


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=None,
    help="Path to config.yaml",
)
@click.option("--check", is_flag=True, default=False, help="Probe provider connectivity")
def status_cmd(config_path: str | None, check: bool) -> None:
    """Show configuration and, with --check, provider health."""
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    console.print(_config_table(cfg))

    if check:
        results = asyncio.run(LLMRouter(cfg).health_check())
        if not results:
            console.print("  [yellow]No providers with API keys to check.[/]")
        for name, healthy in results.items():
            mark = "[bright_green]●[/]" if healthy else "[red]●[/]"
            console.print(f"  {mark} {name}")
