"""Click CLI entry point for impl-planner."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from impl_planner import __version__
from impl_planner.config import is_initialized, load_config, save_config
from impl_planner.log import configure_logging
from impl_planner.models import DescriptorError, ImplicationDescriptor, PlannerConfig
from impl_planner.planner import TestPlanner
from impl_planner.snapshot import SnapshotStore


@click.group()
@click.version_option(version=__version__, prog_name="impl-planner")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Debug logging")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project directory (defaults to the current directory)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, project_root: Path | None) -> None:
    """Implication planner: resolve and report E2E test prerequisites."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["project_root"] = project_root or Path.cwd()
    configure_logging(logging.DEBUG if verbose else None)


def _project(ctx: click.Context) -> tuple[Path, PlannerConfig] | None:
    project_root: Path = ctx.obj["project_root"]
    if not is_initialized(project_root):
        click.echo("Error: Project is not initialized. Run `impl-planner init` first.")
        ctx.exit(1)
        return None
    config = load_config(project_root)
    if config.verbose and not ctx.obj.get("verbose"):
        configure_logging(logging.DEBUG)
    return project_root, config


def _planner(ctx: click.Context) -> tuple[Path, PlannerConfig, TestPlanner] | None:
    project = _project(ctx)
    if project is None:
        return None
    project_root, config = project
    try:
        planner = TestPlanner.from_config(config, project_root)
    except (FileNotFoundError, DescriptorError) as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)
        return None
    return project_root, config, planner


def _descriptor(
    ctx: click.Context, planner: TestPlanner, status: str
) -> ImplicationDescriptor | None:
    implication_id = planner.registry.lookup(status)
    if implication_id is None:
        click.echo(f"Error: Status '{status}' is not in the state registry.")
        ctx.exit(1)
        return None
    try:
        return planner.builder.load(implication_id)
    except DescriptorError as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)
        return None


def _snapshot(
    ctx: click.Context, project_root: Path, config: PlannerConfig, data: str | None
) -> dict | None:
    path = Path(data) if data else project_root / config.data_path
    try:
        return SnapshotStore(path).load_raw()
    except ValueError as e:
        click.echo(f"Error: Cannot read snapshot {path}: {e}")
        ctx.exit(1)
        return None


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize a project for implication planning."""
    project_root: Path = ctx.obj["project_root"]
    already = is_initialized(project_root)

    if already:
        click.echo("Warning: Project is already initialized. Updating configuration.")
        config = load_config(project_root)
    else:
        config = PlannerConfig()

    for directory in config.implications_dirs:
        (project_root / directory).mkdir(parents=True, exist_ok=True)
    registry_path = project_root / config.registry_path
    if not registry_path.exists():
        registry_path.parent.mkdir(parents=True, exist_ok=True)
        registry_path.write_text("{}\n")

    path = save_config(config, project_root)

    if already:
        click.echo("Configuration updated. Existing implications preserved.")
    else:
        click.echo("Initialized implication planner project.")
        for directory in config.implications_dirs:
            click.echo(f"  Created: {project_root / directory}/")
        click.echo(f"  Registry: {registry_path}")
        click.echo(f"  Config:   {path}")


@cli.command()
@click.argument("status")
@click.option("--data", "data", type=click.Path(dir_okay=False), default=None,
              help="Snapshot file (defaults to the configured data path)")
@click.option("--event", default=None, help="Explicit event hint")
@click.option("--test-file", default=None, help="Test file being run")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the analysis as JSON")
@click.pass_context
def analyze(
    ctx: click.Context,
    status: str,
    data: str | None,
    event: str | None,
    test_file: str | None,
    as_json: bool,
) -> None:
    """Check whether the test producing STATUS can run now."""
    from impl_planner.report import format_not_ready_error
    from impl_planner.selection import extract_event_from_filename

    loaded = _planner(ctx)
    if loaded is None:
        return
    project_root, config, planner = loaded
    descriptor = _descriptor(ctx, planner, status)
    if descriptor is None:
        return

    snapshot = _snapshot(ctx, project_root, config, data)
    if snapshot is None:
        return
    result = planner.analyze(
        descriptor, snapshot, test_file, event or extract_event_from_filename(test_file)
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    elif result.ready:
        click.echo(f"Ready: {status} (current: {result.current_status})")
    else:
        click.echo(format_not_ready_error(result))

    if not result.ready:
        ctx.exit(1)


@cli.command()
@click.argument("from_status")
@click.argument("to_status")
@click.option("--data", "data", type=click.Path(dir_okay=False), default=None)
@click.option("--format", "fmt", type=click.Choice(["text", "json", "dot"]), default="text")
@click.pass_context
def chain(ctx: click.Context, from_status: str, to_status: str, data: str | None, fmt: str) -> None:
    """Print the prerequisite chain from FROM_STATUS to TO_STATUS."""
    from impl_planner.exporters.dot import export_chain_dot
    from impl_planner.report import format_chain

    loaded = _planner(ctx)
    if loaded is None:
        return
    project_root, config, planner = loaded
    descriptor = _descriptor(ctx, planner, to_status)
    if descriptor is None:
        return

    snapshot = _snapshot(ctx, project_root, config, data)
    if snapshot is None:
        return
    steps = planner.build_prerequisite_chain(descriptor, from_status, to_status, snapshot)

    if fmt == "json":
        click.echo(json.dumps([s.to_dict() for s in steps], indent=2, default=str))
    elif fmt == "dot":
        click.echo(export_chain_dot(steps))
    elif not steps:
        click.echo("No chain found.")
    else:
        click.echo(f"Chain {from_status} -> {to_status}: {len(steps)} step(s)")
        click.echo(format_chain(steps, from_status))


@cli.command()
@click.option("--format", "fmt", type=click.Choice(["text", "json", "dot"]), default="text")
@click.pass_context
def graph(ctx: click.Context, fmt: str) -> None:
    """Build and display the registry's state graph."""
    from impl_planner.exporters.dot import export_dot
    from impl_planner.graph import build_graph, graph_to_json

    loaded = _planner(ctx)
    if loaded is None:
        return
    _, _, planner = loaded

    gm = build_graph(planner.registry, planner.loader)

    if fmt == "dot":
        click.echo(export_dot(gm))
    elif fmt == "json":
        click.echo(json.dumps(graph_to_json(gm), indent=2))
    else:
        click.echo(
            f"Graph built: {len(gm.states)} states, "
            f"{len(gm.transitions)} transitions"
        )
        if gm.entry_points:
            click.echo(f"Entry points: {', '.join(gm.entry_points)}")
        if gm.terminal_states:
            click.echo(f"Terminal states: {', '.join(gm.terminal_states)}")
        if gm.cycles:
            click.echo(f"Cycles detected: {len(gm.cycles)}")
        if gm.missing_descriptors:
            click.echo(f"Missing descriptors: {', '.join(gm.missing_descriptors)}")


@cli.command()
@click.pass_context
def lint(ctx: click.Context) -> None:
    """Check the registry and descriptors for structural problems."""
    from impl_planner.graph import build_graph
    from impl_planner.lint import has_errors, lint_graph

    loaded = _planner(ctx)
    if loaded is None:
        return
    _, _, planner = loaded

    issues = lint_graph(build_graph(planner.registry, planner.loader))
    if not issues:
        click.echo("No issues found.")
        return

    click.echo(f"Found {len(issues)} issue(s):")
    for issue in issues:
        click.echo(f"  [{issue.severity.value.upper()}] {issue.issue_type.value}: {issue.message}")

    if has_errors(issues):
        ctx.exit(1)


@cli.command()
@click.argument("status")
@click.option("--data", "data", type=click.Path(dir_okay=False), default=None)
@click.option("--platform", default=None, help="Platform of the current session")
@click.option("--test-file", default=None, help="Test file being run")
@click.pass_context
def run(
    ctx: click.Context,
    status: str,
    data: str | None,
    platform: str | None,
    test_file: str | None,
) -> None:
    """Execute missing prerequisites for STATUS with the configured runner command."""
    from impl_planner.models import ExecutionContext
    from impl_planner.planner import PlannerError
    from impl_planner.runner import StepExecutionError, SubprocessStepRunner

    loaded = _planner(ctx)
    if loaded is None:
        return
    project_root, config, planner = loaded
    if not config.runner_command:
        click.echo("Error: No runner_command configured in .impl-planner/config.json.")
        ctx.exit(1)
        return
    descriptor = _descriptor(ctx, planner, status)
    if descriptor is None:
        return

    data_path = Path(data) if data else project_root / config.data_path
    store = SnapshotStore(data_path)
    runner = SubprocessStepRunner(
        config.runner_command, data_path, timeout=config.runner_timeout, cwd=project_root
    )
    context = ExecutionContext(platform=platform, current_test_file=test_file)

    try:
        result = planner.preflight(descriptor, store.load_raw(), context, runner, store)
    except (PlannerError, StepExecutionError) as e:
        click.echo(f"Error: {e}")
        ctx.exit(1)
        return

    click.echo(f"Ready: {status} (current: {result.current_status})")


@cli.command()
@click.option("--data", "data", type=click.Path(dir_okay=False), default=None)
@click.pass_context
def status(ctx: click.Context, data: str | None) -> None:
    """Show the snapshot's current status and change log."""
    from impl_planner.snapshot import CHANGE_LOG_KEY, entity_statuses, get_global_status

    project = _project(ctx)
    if project is None:
        return
    project_root, config = project

    raw = _snapshot(ctx, project_root, config, data)
    if raw is None:
        return
    click.echo(f"Status: {get_global_status(raw, config.default_status)}")
    entities = entity_statuses(raw)
    if entities:
        click.echo("Entities:")
        for name, entity_status in sorted(entities.items()):
            click.echo(f"  {name}: {entity_status}")
    click.echo(f"Change log: {len(raw.get(CHANGE_LOG_KEY) or [])} entries")
