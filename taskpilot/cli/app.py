"""TaskPilot CLI - run the agent loop against a local workspace.

All commands call core modules directly; no server is involved.

Examples:
    taskpilot run "Add a --version flag to cli.py"
    taskpilot run "Explain the build" --mode fast --max-iterations 10
    taskpilot plan "Split utils.py into modules"
    taskpilot execute
    taskpilot tools --mode planning
    taskpilot context show
"""

import asyncio
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from taskpilot.adapters.llm import get_provider
from taskpilot.adapters.workspace.base import WorkspaceBackend, WorkspaceError
from taskpilot.cli.context_commands import context_app
from taskpilot.cli.helpers import configure_logging, console, open_workspace
from taskpilot.core.config import AgentSettings, get_settings
from taskpilot.core.events import AgentEvent, EventType
from taskpilot.core.loop import RunBudget
from taskpilot.core.modes import AgentMode, parse_mode, profile_for
from taskpilot.core.registry import RunRecord, StoredPlan
from taskpilot.core.runtime import AgentRuntime, format_plan
from taskpilot.core.state import RunState, TerminalReason
from taskpilot.core.tools import ALL_TOOLS

PLAN_PATH = ".taskpilot/plan.md"

app = typer.Typer(
    name="taskpilot",
    help="TaskPilot: autonomous coding agent for a local workspace",
    add_completion=False,
    no_args_is_help=True,
)

app.add_typer(context_app, name="context", help="Project context (set, show)")


# =============================================================================
# Helpers
# =============================================================================


def _build_runtime(
    workspace: WorkspaceBackend, provider: Optional[str], settings: AgentSettings
) -> AgentRuntime:
    try:
        llm = get_provider(provider or settings.provider, api_key=settings.anthropic_api_key)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    return AgentRuntime(llm, workspace, settings=settings)


def _budget(
    mode: AgentMode,
    settings: AgentSettings,
    max_iterations: Optional[int],
    timeout: Optional[float],
) -> RunBudget:
    try:
        return RunBudget(
            max_iterations=max_iterations or settings.max_iterations_for(mode),
            max_wall_clock=timeout or settings.max_wall_clock_seconds,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _print_event(event: AgentEvent, verbose: bool) -> None:
    """Render one progress event."""
    data = event.model_dump()
    kind = event.type

    if kind == EventType.ITERATION_START and verbose:
        console.print(f"[dim]Iteration {data['iteration']}/{data['max_iterations']}[/dim]")
    elif kind == EventType.TOOL_START:
        console.print(f"  [cyan]→ {data['tool']}[/cyan] {escape(data['input_summary'])}")
    elif kind == EventType.TOOL_COMPLETE and verbose:
        console.print(f"    [green]✓[/green] [dim]{escape(data['output_preview'])}[/dim]")
    elif kind == EventType.TOOL_ERROR:
        console.print(f"    [red]✗ {escape(data['error'])}[/red]")
    elif kind == EventType.MESSAGE and verbose:
        console.print(f"[dim]{escape(data['text'])}[/dim]")
    elif kind == EventType.ERROR_PIVOT:
        console.print(f"  [yellow]⚠ {escape(data['directive'])}[/yellow]")
    elif kind == EventType.TODO_UPDATE:
        for item in data["todos"]:
            mark = {"completed": "✓", "in_progress": "…"}.get(item["status"], " ")
            console.print(f"    {escape('[' + mark + ']')} {escape(item['content'])}")
    elif kind == EventType.SUB_AGENT_START:
        label = data.get("description") or data["kind"]
        console.print(f"  [magenta]⇢ sub-agent ({data['kind']}): {escape(label)}[/magenta]")
    elif kind == EventType.SUB_AGENT_COMPLETE:
        console.print(
            f"  [magenta]⇠ sub-agent finished after {data['iterations_used']} "
            f"iteration(s) ({data['terminal_reason']})[/magenta]"
        )


async def _stream(
    runtime: AgentRuntime, start: Callable[[], RunRecord], verbose: bool
) -> RunState:
    """Start a run inside the event loop, print its events, return its final state."""
    record = start()
    # Subscribed before the run task gets a chance to emit
    async for event in runtime.publisher.subscribe(record.run_id):
        _print_event(event, verbose)
    return await runtime.wait(record.run_id)


def _print_summary(state: RunState) -> None:
    reason = state.terminal_reason
    color = "green" if reason == TerminalReason.COMPLETED else "red"

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Result", f"[{color}]{reason.value if reason else 'unknown'}[/{color}]")
    table.add_row("Iterations", f"{state.iteration}/{state.max_iterations}")
    if state.total_tokens:
        table.add_row(
            "Tokens", f"{state.total_tokens:,} ({state.input_tokens:,} in, {state.output_tokens:,} out)"
        )
    if state.files_created:
        table.add_row("Created", ", ".join(state.files_created))
    if state.files_modified:
        table.add_row("Modified", ", ".join(state.files_modified))
    if state.error:
        table.add_row("Error", escape(state.error))
    console.print()
    console.print(table)
    if state.summary and state.mode != AgentMode.PLANNING:
        console.print(Panel(escape(state.summary), title="Summary", border_style=color))


def _exit_for(state: RunState) -> None:
    if not state.completed:
        raise typer.Exit(1)


# =============================================================================
# Commands
# =============================================================================


@app.command()
def run(
    prompt: str = typer.Argument(..., help="What the agent should do"),
    mode: str = typer.Option("fast", "--mode", "-m", help="Run mode: fast or planning"),
    workspace_path: Optional[Path] = typer.Option(
        None, "--workspace", "-w", help="Workspace directory (defaults to current directory)"
    ),
    max_iterations: Optional[int] = typer.Option(
        None, "--max-iterations", "-n", help="Maximum LLM round-trips"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Wall-clock limit in seconds"),
    provider: Optional[str] = typer.Option(None, "--provider", help="LLM provider: anthropic or mock"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show model text and debug logs"),
):
    """Run the agent on a task until it completes or hits a limit.

    Exits with code 1 unless the run completed.

    Example:

        taskpilot run "Create hello.txt containing hi"
    """
    settings = get_settings()
    configure_logging(settings.log_level, verbose)

    try:
        run_mode = parse_mode(mode)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    if run_mode == AgentMode.EXECUTING:
        console.print("[red]Error:[/red] Use 'taskpilot execute' to run an approved plan")
        raise typer.Exit(1)

    workspace = open_workspace(workspace_path)
    runtime = _build_runtime(workspace, provider, settings)
    budget = _budget(run_mode, settings, max_iterations, timeout)

    console.print(f"[bold cyan]TaskPilot[/bold cyan] ({run_mode.value} mode) in {workspace.root}")
    state = asyncio.run(
        _stream(runtime, lambda: runtime.start_run(prompt, run_mode, budget=budget), verbose)
    )
    if run_mode == AgentMode.PLANNING and state.plan_text:
        console.print(Panel(escape(state.plan_text), title="Plan", border_style="cyan"))
    _print_summary(state)
    _exit_for(state)


@app.command()
def plan(
    prompt: str = typer.Argument(..., help="Change to plan"),
    workspace_path: Optional[Path] = typer.Option(
        None, "--workspace", "-w", help="Workspace directory (defaults to current directory)"
    ),
    max_iterations: Optional[int] = typer.Option(
        None, "--max-iterations", "-n", help="Maximum LLM round-trips"
    ),
    provider: Optional[str] = typer.Option(None, "--provider", help="LLM provider: anthropic or mock"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show model text and debug logs"),
):
    """Create a plan without modifying the workspace.

    The plan is written to .taskpilot/plan.md for review; run
    'taskpilot execute' to carry it out.

    Example:

        taskpilot plan "Add input validation to the signup form"
    """
    settings = get_settings()
    configure_logging(settings.log_level, verbose)
    workspace = open_workspace(workspace_path)
    runtime = _build_runtime(workspace, provider, settings)
    budget = _budget(AgentMode.PLANNING, settings, max_iterations, None)

    state = asyncio.run(
        _stream(runtime, lambda: runtime.start_run(prompt, AgentMode.PLANNING, budget=budget), verbose)
    )
    stored = runtime.store_plan(runtime.registry.require(state.run_id))
    if stored is None:
        _print_summary(state)
        raise typer.Exit(1)

    try:
        workspace.write_file(PLAN_PATH, stored.plan_content.rstrip() + "\n")
    except WorkspaceError as e:
        console.print(f"[red]Error:[/red] Could not save plan: {e}")
        raise typer.Exit(1)

    console.print(Panel(escape(format_plan(stored)), title="Plan", border_style="cyan"))
    console.print(f"✓ Plan saved to [bold]{PLAN_PATH}[/bold]")
    console.print("Review it, then run: taskpilot execute")


@app.command()
def execute(
    workspace_path: Optional[Path] = typer.Option(
        None, "--workspace", "-w", help="Workspace directory (defaults to current directory)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Execute without asking for approval"),
    max_iterations: Optional[int] = typer.Option(
        None, "--max-iterations", "-n", help="Maximum LLM round-trips"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Wall-clock limit in seconds"),
    provider: Optional[str] = typer.Option(None, "--provider", help="LLM provider: anthropic or mock"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show model text and debug logs"),
):
    """Execute the plan in .taskpilot/plan.md.

    Example:

        taskpilot execute --yes
    """
    settings = get_settings()
    configure_logging(settings.log_level, verbose)
    workspace = open_workspace(workspace_path)

    try:
        plan_text = workspace.read_file(PLAN_PATH)
    except WorkspaceError:
        console.print(f"[red]Error:[/red] No plan found at {PLAN_PATH}. Run 'taskpilot plan' first.")
        raise typer.Exit(1)
    if not plan_text.strip():
        console.print(f"[red]Error:[/red] {PLAN_PATH} is empty")
        raise typer.Exit(1)

    console.print(Panel(escape(plan_text.strip()), title="Plan", border_style="cyan"))
    if not yes and not typer.confirm("Execute this plan?"):
        console.print("Aborted.")
        raise typer.Exit(1)

    runtime = _build_runtime(workspace, provider, settings)
    runtime.plans.save(StoredPlan(project_id=runtime.project_id, plan_content=plan_text))
    runtime.approve_plan()
    budget = _budget(AgentMode.EXECUTING, settings, max_iterations, timeout)

    state = asyncio.run(
        _stream(runtime, lambda: runtime.start_plan_execution(budget=budget), verbose)
    )
    _print_summary(state)
    _exit_for(state)


@app.command()
def tools(
    mode: str = typer.Option("fast", "--mode", "-m", help="Mode: fast, planning or executing"),
):
    """List the tools available in a mode."""
    try:
        tool_mode = parse_mode(mode)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    terminal = profile_for(tool_mode).terminal_tool
    table = Table(title=f"Tools ({tool_mode.value} mode)")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Description")
    for tool in ALL_TOOLS:
        if tool_mode not in tool.allowed_modes:
            continue
        name = f"{tool.name} (ends run)" if tool.name == terminal else tool.name
        table.add_row(name, tool.description)
    console.print(table)


if __name__ == "__main__":
    app()
