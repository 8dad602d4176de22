"""
Vigil CLI - Command line interface.

Usage:
    vigil run "Login and check dashboard" --url https://example.com
    vigil run task.yaml --history ./output/history.json
"""

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console

from vigil import __version__
from vigil.config import DEFAULT_CONFIG_FILENAME, load_config
from vigil.exceptions import VigilError

app = typer.Typer(
    name="vigil",
    help="LLM-driven browser automation on a monitored browser session",
    add_completion=False,
)

console = Console()


@app.command()
def run(
    task: str = typer.Argument(..., help="Task description or path to YAML/JSON file"),
    url: str | None = typer.Option(None, "--url", "-u", help="Starting URL"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to vigil.yaml"),
    history: Path | None = typer.Option(None, "--history", help="Write the run history to this JSON file"),
    headed: bool = typer.Option(False, "--headed", help="Run with visible browser"),
    llm: str | None = typer.Option(None, "--llm", "-l", help="LLM provider (openai/anthropic)"),
    model: str | None = typer.Option(None, "--model", "-m", help="LLM model name"),
    max_steps: int | None = typer.Option(None, "--max-steps", help="Maximum agent steps"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Run browser automation task."""
    from vigil.agent import AgentConfig
    from vigil.logging import setup_logging

    load_dotenv()

    try:
        settings = load_config(
            overrides=_cli_overrides(headed=headed, llm=llm, model=model, max_steps=max_steps, verbose=verbose),
            config_path=config,
        )
    except VigilError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2) from e

    setup_logging(level=settings.log_level, log_file=settings.log_file)

    try:
        agent_config = AgentConfig(**settings.agent)
    except ValidationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2) from e

    task_path = Path(task)
    if task_path.exists() and task_path.suffix in (".yaml", ".yml", ".json"):
        task_content, file_url = _load_task_file(task_path)
        url = url or file_url
        console.print(f"Loaded task from: {task_path}")
    else:
        task_content = task

    console.print("[bold]Vigil[/bold] - Browser Automation Agent")
    console.print(f"Task: {task_content[:80]}{'...' if len(task_content) > 80 else ''}")
    if url:
        console.print(f"URL: {url}")

    try:
        result = asyncio.run(_run_agent(settings, agent_config, task_content, url))
    except VigilError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    if history:
        result.save_to_file(history)
        console.print(f"History written to {history}")

    if result.is_successful():
        console.print(f"[green]✓ Task completed successfully[/green] {result.final_result() or ''}")
    else:
        errors = [e for e in result.errors() if e]
        reason = errors[-1] if errors else "agent did not finish"
        console.print(f"[red]✗ Task failed: {reason}[/red]")
        raise typer.Exit(1)


def _cli_overrides(
    headed: bool,
    llm: str | None,
    model: str | None,
    max_steps: int | None,
    verbose: bool,
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if headed:
        overrides["browser"] = {"headless": False}
    llm_overrides = {key: value for key, value in (("provider", llm), ("model", model)) if value}
    if llm_overrides:
        overrides["llm"] = llm_overrides
    if max_steps:
        overrides["agent"] = {"max_steps": max_steps}
    if verbose:
        overrides["log_level"] = "DEBUG"
    return overrides


async def _run_agent(settings, agent_config, task: str, url: str | None):
    """Run the agent with given settings."""
    from vigil.agent import Agent, FileSystem
    from vigil.agent.factory import create_llm_client
    from vigil.browser import BrowserSession

    llm = create_llm_client(settings.llm)
    session = BrowserSession(profile=settings.browser)
    agent = Agent(
        task=task,
        llm=llm,
        browser_session=session,
        config=agent_config,
        file_system=FileSystem(),
    )

    try:
        await session.start()
        if url:
            await session.navigate(url)
        return await agent.run()
    finally:
        await agent.close()
        await llm.close()


def _load_task_file(path: Path) -> tuple[str, str | None]:
    """Load task (and optional start url) from a YAML or JSON file."""
    content = path.read_text(encoding="utf-8")
    data = yaml.safe_load(content) if path.suffix in (".yaml", ".yml") else json.loads(content)

    if isinstance(data, dict):
        task = data.get("task") or data.get("description")
        steps = data.get("steps")
        if task is None and isinstance(steps, list):
            task = "\n".join(f"{i}. {step}" for i, step in enumerate(steps, 1))
        return str(task if task is not None else data), data.get("url")
    if isinstance(data, list):
        return "\n".join(str(item) for item in data), None
    return str(data), None


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Vigil v{__version__}")


@app.command()
def init(
    directory: str = typer.Argument(".", help="Directory to initialize"),
) -> None:
    """Initialize Vigil workspace."""
    workspace = Path(directory)
    workspace.mkdir(parents=True, exist_ok=True)

    config_path = workspace / DEFAULT_CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text("""# Vigil Configuration
browser:
  headless: true
  navigation_timeout: 30
  # allowed_domains: ["*.example.com"]

llm:
  provider: openai
  model: gpt-4o

agent:
  max_steps: 50
  session_attachment_mode: copy

log_level: INFO
""")
        console.print(f"Created: {config_path}")

    task_path = workspace / "task.yaml"
    if not task_path.exists():
        task_path.write_text("""# Sample Vigil Task
name: Example Login
url: https://example.com/login

steps:
  - Enter email into the email field
  - Enter password into the password field
  - Click the login button
  - Verify dashboard is displayed
""")
        console.print(f"Created: {task_path}")

    console.print("[green]✓ Workspace initialized[/green]")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
