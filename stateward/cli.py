"""
CLI interface for stateward.

Command groups:

    stateward init                 write a default stateward.yaml
    stateward backend setup        create bucket + write backend.tf per phase
    stateward backend describe     show the backend descriptor per phase
    stateward state migrate        move local state into the remote backend
    stateward state backup         snapshot state
    stateward state restore        push a snapshot back
    stateward state snapshots      list snapshots
    stateward state show|list|inspect
    stateward state drift          exit 2 when changes are pending
    stateward state workspace      list|new|select|delete

Exit codes: 0 success / no drift / declined, 1 error, 2 drift, 130 interrupted.

Every command builds one immutable Request from its arguments. The process
environment is read once here (credentials, overrides) and handed down.
"""

import functools
import logging
import os
import signal
from pathlib import Path
from typing import Optional

import click
import yaml

from stateward import __version__
from stateward.backups import BackupManager
from stateward.config import CONFIG_FILENAME, Credentials, StatewardConfig, default_config_dict, load_config
from stateward.drift import DriftDetector, exit_code_for
from stateward.engine import ProvisioningEngine, TerraformEngine
from stateward.errors import (
    EXIT_ERROR,
    EXIT_INTERRUPTED,
    EXIT_OK,
    ConfirmationDeclined,
    StatewardError,
)
from stateward.inspector import StateInspector
from stateward.migration import MigrationEngine, MigrationOptions
from stateward.provisioner import BackendProvisioner
from stateward.schemas import Environment, OperationResult, Request
from stateward.storage import ObjectStorage
from stateward.topology import discover_environment, resolve_topology, select_phases
from stateward.utils import render, render_table, setup_logging, validate_format
from stateward.workspaces import ACTIONS as WORKSPACE_ACTIONS
from stateward.workspaces import WorkspaceManager

logger = logging.getLogger(__name__)

DRIFT_FORMATS = ("table", "json")


# =============================================================================
# Collaborator factories (patched in tests)
# =============================================================================

def make_engine(
    config: StatewardConfig,
    environ: dict,
    credentials: Credentials,
    *,
    workspace: Optional[str] = None,
    timeout: Optional[float] = None,
) -> ProvisioningEngine:
    env = dict(environ)
    env.update(credentials.engine_env())
    return TerraformEngine(
        binary=config.engine.binary,
        env=env,
        min_version=config.engine.min_version,
        timeout=timeout if timeout is not None else config.engine.timeout,
        workspace=workspace,
    )


def connect_storage(config: StatewardConfig, credentials: Credentials, region: str) -> ObjectStorage:
    return ObjectStorage.connect(credentials, region, config.storage.endpoint_for(region))


# =============================================================================
# Helpers
# =============================================================================

def _on_sigterm(signum, frame):
    raise KeyboardInterrupt()


def handle_errors(func):
    """Per-command error boundary: maps exceptions to messages and exit codes."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ConfirmationDeclined as e:
            click.echo(f"Cancelled: {e}")
            raise SystemExit(EXIT_OK)
        except StatewardError as e:
            prefix = f"{e.phase}: " if e.phase else ""
            click.echo(f"✗ {type(e).__name__}: {prefix}{e}", err=True)
            if e.remediation:
                click.echo(f"  → {e.remediation}", err=True)
            raise SystemExit(EXIT_ERROR)
        except (KeyboardInterrupt, click.Abort):
            # click.confirm turns Ctrl-C at a prompt into click.Abort
            click.echo("\n✗ Interrupted; phases already completed are left as-is", err=True)
            raise SystemExit(EXIT_INTERRUPTED)

    return wrapper


def phase_options(func):
    """--env, --phase and --all-phases."""
    func = click.option("--all-phases", is_flag=True, help="Target every configured phase")(func)
    func = click.option("--phase", default=None, help="Target a single phase (phased layouts)")(func)
    func = click.option("--env", "env_name", required=True, help="Environment name")(func)
    return func


def _config(ctx) -> StatewardConfig:
    if "config" not in ctx.obj:
        raise ctx.obj["config_error"]
    return ctx.obj["config"]


def _credentials(ctx) -> Credentials:
    return Credentials.from_environ(ctx.obj["environ"])


def _target(ctx, request: Request) -> tuple[StatewardConfig, Environment, list]:
    """Config, environment and the ordered phases a request targets."""
    config = _config(ctx)
    environment = discover_environment(config, request.environment)
    topology = resolve_topology(environment.root_path, config.phases, config.root_config_file)
    phases = select_phases(topology, request.phase, request.all_phases)
    logger.debug(
        f"Environment {environment.name}: {topology.kind.value} topology, targeting {phases}",
        extra={"event": "topology", "metadata": topology.to_dict()},
    )
    return config, environment, phases


def _engine(ctx, request: Request, *, preflight: bool = True) -> ProvisioningEngine:
    config = _config(ctx)
    engine = make_engine(
        config,
        ctx.obj["environ"],
        _credentials(ctx),
        workspace=request.workspace,
        timeout=request.timeout,
    )
    if preflight:
        engine.preflight()
    return engine


def _confirm(question: str) -> bool:
    return click.confirm(question, default=False)


def _label(environment: Environment, phase: Optional[str]) -> str:
    return phase or environment.name


def _report(environment: Environment, result: OperationResult, output_format: str = "table") -> int:
    """Print a multi-phase result and return its exit code."""
    if output_format != "table":
        click.echo(render(result.to_dict(), output_format))
    else:
        for outcome in result.outcomes:
            if outcome.failed:
                continue
            click.echo(f"✓ {_label(environment, outcome.phase)}: {outcome.message}")
            for action in outcome.data.get("actions", []):
                click.echo(f"    - {action}")

    for outcome in result.outcomes:
        if outcome.failed:
            click.echo(f"✗ {_label(environment, outcome.phase)}: {outcome.error}", err=True)
            if outcome.remediation:
                click.echo(f"  → {outcome.remediation}", err=True)
    return EXIT_OK if result.success else EXIT_ERROR


# =============================================================================
# Root group
# =============================================================================

@click.group()
@click.version_option(version=__version__, prog_name="stateward")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding environments/ and backups/ (default: current directory)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="STATEWARD_CONFIG",
    default=None,
    help=f"Configuration file (default: <project-root>/{CONFIG_FILENAME})",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, project_root: Optional[Path], config_path: Optional[Path], verbose: bool):
    """
    stateward - Remote state lifecycle orchestrator.

    Provision the state backend, migrate, back up, restore, inspect and
    drift-check infrastructure state per environment and phase.
    """
    ctx.ensure_object(dict)
    environ = dict(os.environ)
    ctx.obj["environ"] = environ
    ctx.obj["project_root"] = project_root or Path.cwd()
    ctx.obj["verbose"] = verbose

    try:
        config = load_config(config_path=config_path, project_root=project_root, environ=environ)
    except StatewardError as e:
        # init still works with a broken config; every other command re-raises it
        ctx.obj["config_error"] = e
        return

    ctx.obj["config"] = config
    setup_logging(
        config.get_log_file_path(),
        log_level="DEBUG" if verbose else config.logging.level,
        log_format=config.logging.format,
        console_output=config.logging.console,
    )
    signal.signal(signal.SIGTERM, _on_sigterm)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(ctx, force: bool):
    """Write a default stateward.yaml at the project root."""
    cfg_path = Path(ctx.obj["project_root"]) / CONFIG_FILENAME
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(EXIT_ERROR)

    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    cfg_path.write_text(yaml.safe_dump(default_config_dict(), sort_keys=False))
    click.echo(f"Initialized stateward config at {cfg_path}")
    click.echo("Export SCW_ACCESS_KEY, SCW_SECRET_KEY and SCW_DEFAULT_PROJECT_ID before `stateward backend setup`.")


# =============================================================================
# Backend commands
# =============================================================================

@main.group("backend")
def backend_group():
    """Provision and describe the remote state backend."""
    pass


@backend_group.command("setup")
@phase_options
@click.option("--region", default=None, help="Storage region (default: storage.region)")
@click.option("--dry-run", is_flag=True, help="Show intended actions only")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option("--timeout", type=float, default=None, help="Per call timeout in seconds")
@click.pass_context
@handle_errors
def backend_setup(ctx, env_name, phase, all_phases, region, dry_run, force, timeout):
    """
    Create the state bucket and write backend.tf for each phase.

    Safe to re-run: an existing bucket is left as-is and backend.tf is only
    rewritten when its content changes.

    Examples:

        stateward backend setup --env=dev --all-phases

        stateward backend setup --env=prod --phase=infra --region=nl-ams --dry-run
    """
    request = Request(
        command="backend.setup",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        region=region,
        dry_run=dry_run,
        force=force,
        timeout=timeout,
    )
    config, environment, phases = _target(ctx, request)
    region = config.validate_region(request.region or config.storage.region)

    storage = None
    if not request.dry_run:
        credentials = _credentials(ctx).require()
        if not request.force:
            labels = ", ".join(environment.label(p) for p in phases)
            if not _confirm(f"Provision backend bucket and write {config.backend_file} for {labels} in {region}?"):
                raise ConfirmationDeclined("Backend setup cancelled; nothing was changed")
        storage = connect_storage(config, credentials, region)

    provisioner = BackendProvisioner(config, storage)
    result = provisioner.ensure(environment, phases, region=region, dry_run=request.dry_run)
    code = _report(environment, result)

    if result.success and not request.dry_run:
        selector = "" if phases == [None] else (" --all-phases" if len(phases) > 1 else f" --phase={phases[0]}")
        click.echo(f"\nNext: stateward state migrate --env={environment.name}{selector}")
    raise SystemExit(code)


@backend_group.command("describe")
@phase_options
@click.option("--region", default=None, help="Storage region (default: storage.region)")
@click.option("--format", "output_format", default="table", help="Output format: table, json or yaml")
@click.pass_context
@handle_errors
def backend_describe(ctx, env_name, phase, all_phases, region, output_format):
    """Show bucket, key, region and endpoint per phase. No side effects."""
    request = Request(
        command="backend.describe",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        region=region,
        output_format=validate_format(output_format),
    )
    config, environment, phases = _target(ctx, request)
    region = config.validate_region(request.region or config.storage.region)
    descriptors = BackendProvisioner(config).describe(environment, phases, region=region)

    data = [{"phase": p, **d.to_dict()} for p, d in descriptors]
    table = render_table(
        f"Backend: {environment.name}",
        ["Phase", "Bucket", "Key", "Region", "Endpoint"],
        [(_label(environment, p), d.bucket, d.key, d.region, d.endpoint) for p, d in descriptors],
    )
    click.echo(render(data, request.output_format, table))


# =============================================================================
# State commands
# =============================================================================

@main.group("state")
def state_group():
    """Migrate, back up, restore and inspect state."""
    pass


@state_group.command("migrate")
@phase_options
@click.option("--dry-run", is_flag=True, help="Show intended actions only")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option("--skip-backup", is_flag=True, help="Do not snapshot state first (not recommended)")
@click.option("--timeout", type=float, default=None, help="Per call timeout in seconds")
@click.pass_context
@handle_errors
def state_migrate(ctx, env_name, phase, all_phases, dry_run, force, skip_backup, timeout):
    """
    Migrate local state into the remote backend.

    Every targeted phase is snapshotted first (unless --skip-backup), then
    re-initialized against backend.tf and verified.

    Examples:

        stateward state migrate --env=dev --all-phases --dry-run

        stateward state migrate --env=staging
    """
    request = Request(
        command="state.migrate",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        dry_run=dry_run,
        force=force,
        skip_backup=skip_backup,
        timeout=timeout,
    )
    config, environment, phases = _target(ctx, request)
    options = MigrationOptions(
        dry_run=request.dry_run,
        force=request.force,
        skip_backup=request.skip_backup,
        timeout=request.timeout,
    )

    if request.dry_run:
        click.echo("=== DRY RUN MODE === (no changes will be made)")
        engine = _engine(ctx, request, preflight=False)
    else:
        _credentials(ctx).require()
        engine = _engine(ctx, request)

    migrator = MigrationEngine(config, engine, BackupManager(config, engine))
    # Backend artifacts are checked before the prompt
    migrator.check_backend_artifacts(environment, phases)

    if not request.dry_run and not request.force:
        labels = ", ".join(environment.label(p) for p in phases)
        if not _confirm(f"Migrate state of {labels} to the remote backend?"):
            raise ConfirmationDeclined("Migration cancelled; local state left unmodified")

    result = migrator.migrate(environment, phases, options)
    code = _report(environment, result)

    if result.backup is not None and result.backup.snapshots:
        click.echo(f"Pre-migration snapshot: {result.backup.snapshot_id}")
    for warning in result.warnings:
        click.echo(f"⚠ {warning}", err=True)
    if result.report_path is not None:
        click.echo(f"Report: {result.report_path}")
    raise SystemExit(code)


@state_group.command("backup")
@phase_options
@click.option("--workspace", default=None, help="Engine workspace to read")
@click.option("--timeout", type=float, default=None, help="Per call timeout in seconds")
@click.pass_context
@handle_errors
def state_backup(ctx, env_name, phase, all_phases, workspace, timeout):
    """Snapshot the current state of each targeted phase."""
    request = Request(
        command="state.backup",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        workspace=workspace,
        timeout=timeout,
    )
    config, environment, phases = _target(ctx, request)
    engine = _engine(ctx, request)
    result = BackupManager(config, engine).backup(
        environment,
        phases,
        workspace=request.workspace,
        timeout=request.timeout,
    )
    code = _report(environment, result)
    if result.snapshots:
        click.echo(f"Snapshot: {result.snapshot_id}")
    raise SystemExit(code)


@state_group.command("restore")
@phase_options
@click.option("--snapshot", "snapshot_id", required=True, help="Snapshot id (<env>-<timestamp>)")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option("--timeout", type=float, default=None, help="Per call timeout in seconds")
@click.pass_context
@handle_errors
def state_restore(ctx, env_name, phase, all_phases, snapshot_id, force, timeout):
    """
    Replace the live state with a snapshot.

    Example:

        stateward state restore --env=staging --snapshot=staging-20240101-120000
    """
    request = Request(
        command="state.restore",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        snapshot_id=snapshot_id,
        force=force,
        timeout=timeout,
    )
    config, environment, phases = _target(ctx, request)
    _credentials(ctx).require()
    engine = _engine(ctx, request)
    result = BackupManager(config, engine).restore(
        environment,
        request.snapshot_id,
        phases,
        force=request.force,
        confirm=_confirm,
        timeout=request.timeout,
    )
    code = _report(environment, result)
    if result.pre_restore is not None and result.pre_restore.snapshots:
        click.echo(f"Pre-restore snapshot: {result.pre_restore.snapshot_id}")
    raise SystemExit(code)


@state_group.command("snapshots")
@click.option("--env", "env_name", required=True, help="Environment name")
@click.option("--format", "output_format", default="table", help="Output format: table, json or yaml")
@click.pass_context
@handle_errors
def state_snapshots(ctx, env_name, output_format):
    """List snapshots of an environment, newest first."""
    request = Request(command="state.snapshots", environment=env_name, output_format=validate_format(output_format))
    config = _config(ctx)
    environment = discover_environment(config, request.environment)
    snapshots = BackupManager(config, engine=None).list_snapshots(environment)

    if not snapshots and request.output_format == "table":
        click.echo(f"No snapshots found for {environment.name}")
        return
    table = render_table(
        f"Snapshots: {environment.name}",
        ["Snapshot", "Phase", "Category", "Resources", "Created"],
        [
            (s.id, s.phase or "-", s.category, s.resource_count, s.created_at.strftime("%Y-%m-%d %H:%M:%S"))
            for s in snapshots
        ],
    )
    click.echo(render([s.to_dict() for s in snapshots], request.output_format, table))


def _inspect(ctx, view, env_name, phase, all_phases, workspace, output_format, timeout):
    request = Request(
        command=f"state.{view}",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        workspace=workspace,
        output_format=validate_format(output_format),
        timeout=timeout,
    )
    _, environment, phases = _target(ctx, request)
    engine = _engine(ctx, request)
    result = StateInspector(engine).run(view, environment, phases, timeout=request.timeout)

    if request.output_format != "table":
        click.echo(render(result.to_dict(), request.output_format))
    else:
        for outcome in result.outcomes:
            if outcome.failed:
                continue
            click.echo(_inspect_table(view, environment, outcome.phase, outcome.data))
    failures = [o for o in result.outcomes if o.failed]
    for outcome in failures:
        click.echo(f"✗ {_label(environment, outcome.phase)}: {outcome.error}", err=True)
        if outcome.remediation:
            click.echo(f"  → {outcome.remediation}", err=True)
    raise SystemExit(EXIT_ERROR if failures else EXIT_OK)


def _inspect_table(view: str, environment: Environment, phase: Optional[str], data: dict) -> str:
    title = f"{environment.label(phase)}: {data['resource_count']} resources"
    if view == "show":
        table = render_table(title, ["Resource type", "Count"], data["resources_by_type"].items())
    elif view == "list":
        table = render_table(
            title,
            ["Address", "Type", "Provider"],
            [(r["address"], r["type"], r["provider"]) for r in data["resources"]],
        )
    else:
        table = render_table(
            f"{title} (serial {data['serial']}, lineage {data['lineage']})",
            ["Address", "Type", "Attributes"],
            [(r["address"], r["type"], len(r.get("values", {}))) for r in data["resources"]],
        )
    text = render(data, "table", table)
    if view != "list" and data.get("outputs"):
        outputs = render_table(
            "Outputs",
            ["Name", "Value"],
            [(o["name"], o["value"]) for o in data["outputs"]],
        )
        text += "\n" + render(data["outputs"], "table", outputs)
    return text


def _inspect_command(view: str, summary: str):
    @state_group.command(view, help=summary)
    @phase_options
    @click.option("--workspace", default=None, help="Engine workspace to read")
    @click.option("--format", "output_format", default="table", help="Output format: table, json or yaml")
    @click.option("--timeout", type=float, default=None, help="Per call timeout in seconds")
    @click.pass_context
    @handle_errors
    def command(ctx, env_name, phase, all_phases, workspace, output_format, timeout):
        _inspect(ctx, view, env_name, phase, all_phases, workspace, output_format, timeout)

    return command


state_show = _inspect_command("show", "Summarize state: resource counts by type, providers, outputs.")
state_list = _inspect_command("list", "List resource addresses in state.")
state_inspect = _inspect_command("inspect", "Show full state detail: resources, outputs, serial, lineage.")


@state_group.command("drift")
@phase_options
@click.option("--workspace", default=None, help="Engine workspace to check")
@click.option("--format", "output_format", default="table", help="Output format: table or json")
@click.option("--timeout", type=float, default=None, help="Per call timeout in seconds")
@click.pass_context
@handle_errors
def state_drift(ctx, env_name, phase, all_phases, workspace, output_format, timeout):
    """
    Compare state with the live infrastructure.

    Exit code 0: no drift, 2: changes pending, 1: a phase could not be checked.
    """
    request = Request(
        command="state.drift",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        workspace=workspace,
        output_format=validate_format(output_format, DRIFT_FORMATS),
        timeout=timeout,
    )
    _, environment, phases = _target(ctx, request)
    engine = _engine(ctx, request)
    reports = DriftDetector(engine).check(environment, phases, timeout=request.timeout)

    if request.output_format == "json":
        click.echo(render({"environment": environment.name, "reports": [r.to_dict() for r in reports]}, "json"))
    else:
        click.echo(f"Drift report: {environment.name}")
        for report in reports:
            click.echo(f"  {_label(environment, report.phase)}: {report.status.value}")
            if ctx.obj.get("verbose") and report.diff_text:
                click.echo(report.diff_text)
    raise SystemExit(exit_code_for(reports))


@state_group.command("workspace")
@click.argument("action", type=click.Choice(WORKSPACE_ACTIONS))
@phase_options
@click.option("--workspace", default=None, help="Workspace name (required for new/select/delete)")
@click.pass_context
@handle_errors
def state_workspace(ctx, action, env_name, phase, all_phases, workspace):
    """Manage engine workspaces: list, new, select, delete."""
    request = Request(
        command="state.workspace",
        environment=env_name,
        phase=phase,
        all_phases=all_phases,
        workspace=workspace,
        workspace_action=action,
    )
    _, environment, phases = _target(ctx, request)
    # Workspace commands act on the selection itself, never through TF_WORKSPACE
    engine = _engine(ctx, request.with_changes(workspace=None))
    result = WorkspaceManager(engine).run(
        request.workspace_action,
        environment,
        phases,
        request.workspace,
    )
    raise SystemExit(_report(environment, result))


if __name__ == "__main__":
    main()
