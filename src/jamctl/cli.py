"""Typer-powered command line interface for ``jamctl``.

Every command runs inside a structured operation scope (see
:mod:`jamctl.logging`) so its outcome lands in ``operations.jsonl`` whether it
succeeds or fails. Failures raised by the providers carry their own exit code
(:class:`~jamctl.exit_codes.ExitCode`); commands translate them through
:func:`_command_error`.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .errors import JamctlError, ReadinessTimeout, ToolchainMissing
from .exit_codes import ExitCode
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .platform import Platform
from .providers import (
    DeployRequest,
    ProcessSupervisor,
    ReadinessProber,
    ReleaseResolver,
    ToolchainTools,
    VersionInstaller,
)
from .providers.readiness import probe_url
from .providers.version_installer import installed_binaries
from .state import ConfigStore, InstallRecord

console = Console()

PVM_BUILD_TOOL = "jam-pvm-build"

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to jamctl's YAML config file.",
)

VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Print debug output.",
)

RPC_OPTION = typer.Option(
    None,
    "--rpc",
    help="RPC endpoint of the testnet (defaults to the configured rpc_endpoint).",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install and supervise a local JAM (polkajam) toolchain.

        Use ``setup`` to install the latest nightly, ``up``/``down`` to run the
        local testnet, and ``deploy``/``monitor`` to talk to it.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    store: ConfigStore
    locks: LockManager
    logger: StructuredLogger
    installer: VersionInstaller
    supervisor: ProcessSupervisor
    prober: ReadinessProber
    transport: httpx.BaseTransport | None = None

    def resolver(self) -> ReleaseResolver:
        """Return a release resolver configured from settings."""
        releases = self.config.releases
        return ReleaseResolver(
            index_url=releases.index_url,
            limit=releases.limit,
            timeout=releases.http_timeout,
            retries=releases.retries,
            backoff=releases.backoff,
            token=ReleaseResolver.token_from_env(releases.token_env),
            store=self.store,
            transport=self.transport,
        )

    def tools(self, record: InstallRecord) -> ToolchainTools:
        """Return the client binaries of *record*."""
        return ToolchainTools(
            record,
            jamt=self.config.tools.jamt,
            jamtop=self.config.tools.jamtop,
        )


def build_runtime(
    config: AppConfig,
    *,
    transport: httpx.BaseTransport | None = None,
) -> RuntimeContext:
    """Wire the providers for *config*."""
    store = ConfigStore(config.state_file)
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    logger = StructuredLogger(config.logs_dir)
    installer = VersionInstaller(
        toolchain_root=config.toolchain_dir,
        store=store,
        timeout=config.releases.http_timeout,
        retries=config.releases.retries,
        backoff=config.releases.backoff,
        transport=transport,
    )
    supervisor = ProcessSupervisor(
        runtime_dir=config.runtime_dir,
        logs_dir=config.logs_dir,
        locks=locks,
        binary=config.supervisor.binary,
        args=config.supervisor.args,
        grace_period=config.supervisor.grace_period,
    )
    prober = ReadinessProber(transport=transport)
    return RuntimeContext(
        config=config,
        store=store,
        locks=locks,
        logger=logger,
        installer=installer,
        supervisor=supervisor,
        prober=prober,
        transport=transport,
    )


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    runtime = build_runtime(config)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the jamctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    runtime = _ensure_runtime(ctx, config_file)
    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"jamctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _configure_verbosity(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: list[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _provider_error(op: OperationScope, exc: JamctlError | LockTimeoutError) -> NoReturn:
    rc = exc.exit_code if isinstance(exc, JamctlError) else ExitCode.ENVIRONMENT
    _command_error(op, str(exc), rc=int(rc), errors=[str(exc)])


def _require_toolchain(runtime: RuntimeContext) -> InstallRecord:
    config = runtime.store.load()
    record = config.active_record
    if record is None or not record.is_present():
        raise ToolchainMissing(
            "JAM toolchain",
            "Run 'jamctl setup' to install the JAM toolchain.",
        )
    return record


def _resolve_endpoint(runtime: RuntimeContext, rpc: str | None) -> str:
    return rpc or runtime.config.rpc_endpoint


def _check_endpoint(op: OperationScope, endpoint: str) -> None:
    try:
        probe_url(endpoint)
    except ValueError as exc:
        _command_error(op, f"{exc}. Use a ws://, wss://, http:// or https:// URL.")


def _print_binaries(title: str, binaries: list[str] | tuple[str, ...], bullet: str) -> None:
    if not binaries:
        return
    console.print(f"\n[bold]{title}[/bold]")
    for name in binaries:
        console.print(f"  {bullet} {name}")


# ----------------------------------------------------------------------
# setup
# ----------------------------------------------------------------------


@app.command()
def setup(
    ctx: typer.Context,
    list_releases: bool = typer.Option(
        False,
        "--list",
        help="List available releases instead of installing.",
    ),
    info: bool = typer.Option(
        False,
        "--info",
        help="Show the installed toolchain without contacting the network.",
    ),
    version: str | None = typer.Option(
        None,
        "--version",
        help="Release tag to install (defaults to the latest nightly).",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Reinstall even when the release is already installed.",
    ),
    update: bool = typer.Option(
        False,
        "--update",
        help="Install the latest nightly if it is newer than the active version.",
    ),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Install the JAM toolchain."""
    runtime = _get_runtime(ctx)
    _configure_verbosity(verbose)

    if info:
        _setup_info(runtime)
        return
    if list_releases:
        _setup_list(runtime)
        return

    args = {"version": version, "force": force, "update": update}
    with runtime.logger.operation(
        "setup",
        args=args,
        target={"kind": "toolchain", "version": version or "latest"},
    ) as op:
        if update and version:
            _command_error(op, "--update always installs the latest nightly; drop --version.")

        try:
            platform = Platform.detect()
            console.print(f"[cyan]→[/cyan] Detected platform: [yellow]{platform}[/yellow]")
            if version:
                console.print(f"[cyan]→[/cyan] Fetching release [yellow]{version}[/yellow]...")
            else:
                console.print("[cyan]→[/cyan] Fetching latest nightly release...")

            with runtime.resolver() as resolver:
                descriptor = resolver.resolve(version, platform)
            tag = descriptor.version.tag
            console.print(f"[cyan]→[/cyan] Found release: [green]{tag}[/green]")
            op.add_step("resolver.resolve", status="success", detail=tag)

            active = runtime.store.load().active_record
            if update and not force and active is not None and active.version == tag:
                if active.is_present():
                    console.print(
                        f"\n[green]✓[/green] Toolchain [cyan]{tag}[/cyan] is already the latest."
                    )
                    op.success("Toolchain already up to date.", changed=0, context={"version": tag})
                    return

            with runtime.locks.install_lock() as lock:
                op.set_lock_wait_ms(lock.wait_ms)
                with console.status(f"Downloading {tag}..."):
                    result = runtime.installer.install(descriptor, force=force)
        except (JamctlError, LockTimeoutError) as exc:
            _provider_error(op, exc)

        record = result.record
        if not result.downloaded:
            op.add_step("installer.reuse", status="skipped", detail=str(record.path))
            console.print(
                f"\n[green]✓[/green] Toolchain [cyan]{tag}[/cyan] is already installed at "
                f"[yellow]{record.path}[/yellow]"
            )
            if not result.activated:
                console.print(
                    "\nUse [cyan]--force[/cyan] to reinstall or [cyan]--update[/cyan] "
                    "to update to latest."
                )
        else:
            op.add_step("installer.install", status="success", detail=str(record.path))
            console.print(
                f"\n[green]✓[/green] Installed JAM toolchain [cyan]{tag}[/cyan] to "
                f"[yellow]{record.path}[/yellow]"
            )
            if not record.integrity.get("verified"):
                console.print(
                    "[yellow]No checksum published for this asset; integrity not verified.[/yellow]"
                )
        if result.activated and not result.downloaded:
            console.print(f"[green]Activated {tag}.[/green]")
        _print_binaries("Installed binaries:", result.binaries, "[green]✓[/green]")
        changed = int(result.downloaded) + int(result.activated)
        context = {"version": tag, "path": str(record.path), "integrity": record.integrity}
        if result.downloaded and not record.integrity.get("verified"):
            op.warning(
                "Toolchain installed without checksum verification.",
                warnings=["integrity not verified: no checksum published"],
                changed=changed,
                context=context,
            )
        else:
            op.success(
                "Toolchain installed." if result.downloaded else "Toolchain already installed.",
                changed=changed,
                context=context,
            )


def _setup_list(runtime: RuntimeContext) -> None:
    with runtime.logger.operation(
        "setup --list",
        args={"list": True},
        target={"kind": "toolchain", "scope": "releases"},
    ) as op:
        console.print("[cyan]→[/cyan] Fetching available releases...\n")
        try:
            with runtime.resolver() as resolver:
                releases = resolver.list_versions()
            active = runtime.store.load().active
        except (JamctlError, LockTimeoutError) as exc:
            _provider_error(op, exc)

        console.print("[bold]Available releases:[/bold]")
        if not releases:
            console.print("  (none)")
        for release in releases:
            if release.tag == active:
                console.print(
                    f"  [green]✓[/green] [cyan]{release.tag}[/cyan] [green](installed)[/green]"
                )
            else:
                console.print(f"  [dim]•[/dim] [cyan]{release.tag}[/cyan]")
        console.print(
            "\nInstall a specific version with: [cyan]jamctl setup --version <tag>[/cyan]"
        )
        op.success("Listed releases.", changed=0, context={"count": len(releases)})


def _setup_info(runtime: RuntimeContext) -> None:
    with runtime.logger.operation(
        "setup --info",
        args={"info": True},
        target={"kind": "toolchain", "scope": "active"},
    ) as op:
        try:
            with runtime.resolver() as resolver:
                record = resolver.info()
        except JamctlError as exc:
            _provider_error(op, exc)

        console.print("[bold]JAM Toolchain Info[/bold]\n")
        if record is None or not record.is_present():
            console.print("  [yellow]⚠[/yellow] No toolchain installed")
            console.print("\n  Run [cyan]jamctl setup[/cyan] to install the latest nightly.")
            op.success("No toolchain installed.", changed=0)
            return

        console.print(f"  [dim]Version:[/dim] [green]{record.version}[/green]")
        console.print(f"  [dim]Location:[/dim] [yellow]{record.path}[/yellow]")
        if record.installed_at:
            console.print(f"  [dim]Installed:[/dim] {record.installed_at}")
        _print_binaries("Available binaries:", installed_binaries(record.path), "•")

        console.print("\n[bold]Build tools:[/bold]")
        build_version = _probe_build_tool()
        if build_version is not None:
            console.print(f"  [green]✓[/green] {PVM_BUILD_TOOL} [dim]{build_version}[/dim]")
        else:
            console.print(f"  [red]✗[/red] {PVM_BUILD_TOOL} (not installed)")
            console.print(f"    Install with: [cyan]cargo install {PVM_BUILD_TOOL}[/cyan]")
        op.success(
            "Reported toolchain info.",
            changed=0,
            context={"version": record.version, "build_tool": build_version},
        )


def _probe_build_tool() -> str | None:
    executable = shutil.which(PVM_BUILD_TOOL)
    if executable is None:
        return None
    try:
        result = subprocess.run(  # noqa: S603
            [executable, "--version"],
            capture_output=True,
            text=True,
            check=False,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


# ----------------------------------------------------------------------
# up / down / status
# ----------------------------------------------------------------------


@app.command()
def up(
    ctx: typer.Context,
    foreground: bool = typer.Option(
        False,
        "--foreground",
        help="Run the testnet attached to this terminal until Ctrl+C.",
    ),
    rpc: str | None = RPC_OPTION,
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=0.1,
        help="Seconds to wait for the RPC endpoint to become ready.",
    ),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Start the local JAM testnet."""
    runtime = _get_runtime(ctx)
    _configure_verbosity(verbose)
    endpoint = _resolve_endpoint(runtime, rpc)
    wait = timeout if timeout is not None else runtime.config.readiness.timeout

    with runtime.logger.operation(
        "up",
        args={"foreground": foreground, "rpc": endpoint, "timeout": wait},
        target={"kind": "testnet", "endpoint": endpoint},
    ) as op:
        _check_endpoint(op, endpoint)
        try:
            record = _require_toolchain(runtime)
            if foreground:
                console.print("[cyan]→[/cyan] Starting JAM testnet in foreground...")
                console.print(f"  RPC endpoint: [green]{endpoint}[/green]")
                console.print("  Press Ctrl+C to stop\n")
                handle = runtime.supervisor.start(record, endpoint=endpoint, foreground=True)
            else:
                console.print("[cyan]→[/cyan] Starting JAM testnet in background...")
                handle = runtime.supervisor.start(record, endpoint=endpoint)
        except (JamctlError, LockTimeoutError) as exc:
            _provider_error(op, exc)

        op.add_step("supervisor.start", status="success", detail=f"pid={handle.pid}")
        if foreground:
            if handle.interrupted:
                console.print("\n[green]✓[/green] Testnet stopped")
                op.success("Foreground testnet interrupted.", changed=0)
            elif handle.exit_code:
                _command_error(
                    op,
                    f"Testnet exited with status {handle.exit_code}",
                    rc=int(ExitCode.PROVIDER),
                )
            else:
                op.success("Foreground testnet exited.", changed=0)
            return

        result = runtime.prober.await_ready(
            endpoint,
            timeout=wait,
            interval=runtime.config.readiness.interval,
            abort_if=lambda: not runtime.supervisor.is_alive(handle),
        )
        if result.aborted:
            try:
                runtime.supervisor.stop(handle)
            except (JamctlError, LockTimeoutError) as exc:
                _provider_error(op, exc)
            _command_error(
                op,
                f"Testnet exited before becoming ready. See {handle.log_file} for details.",
                rc=int(ExitCode.PROVIDER),
            )
        if not result.ready:
            error = ReadinessTimeout(endpoint, wait, result.last_error)
            _command_error(
                op,
                f"{error}. The testnet is still running (PID: {handle.pid}); "
                "inspect its log or stop it with 'jamctl down'.",
                rc=int(error.exit_code),
                errors=[str(error)],
            )
        op.add_step("readiness", status="success", detail=f"attempts={result.attempts}")

        console.print(f"[green]✓[/green] Testnet started (PID: [yellow]{handle.pid}[/yellow])")
        console.print(f"  RPC endpoint: [green]{endpoint}[/green]")
        console.print("\n  Stop with: [cyan]jamctl down[/cyan]")
        if handle.log_file is not None:
            console.print(f"  Logs: [dim]{handle.log_file}[/dim]")
        if verbose:
            console.print(f"  Ready after {result.elapsed:.1f}s ({result.attempts} attempts)")
        op.success(
            "Testnet started.",
            changed=1,
            context={"pid": handle.pid, "endpoint": endpoint, "version": handle.version},
        )


@app.command()
def down(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        help="Kill the testnet immediately instead of asking it to exit.",
    ),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Stop the local JAM testnet."""
    runtime = _get_runtime(ctx)
    _configure_verbosity(verbose)

    with runtime.logger.operation(
        "down",
        args={"force": force},
        target={"kind": "testnet"},
    ) as op:
        try:
            running = runtime.supervisor.status()
            if running is not None:
                console.print(
                    f"[cyan]→[/cyan] Stopping JAM testnet "
                    f"(PID: [yellow]{running.pid}[/yellow])..."
                )
            result = runtime.supervisor.stop(force=force)
        except (JamctlError, LockTimeoutError) as exc:
            _provider_error(op, exc)

        if result.stopped:
            console.print("[green]✓[/green] Testnet stopped")
            op.success(
                "Testnet stopped.",
                changed=1,
                context={"pid": result.pid, "forced": result.forced},
            )
        elif result.stale_lock_removed:
            console.print("[cyan]→[/cyan] Testnet was not running (cleaned up stale lock)")
            op.success("Removed stale lock.", changed=1, context={"pid": result.pid})
        else:
            console.print("[cyan]→[/cyan] No testnet is currently running")
            op.success("Nothing to stop.", changed=0)


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit status as JSON instead of a table.",
    ),
) -> None:
    """Report the active toolchain and the supervised testnet."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "testnet"},
    ) as op:
        try:
            record = runtime.store.load().active_record
            handle = runtime.supervisor.status()
        except JamctlError as exc:
            _provider_error(op, exc)

        payload: dict[str, object] = {
            "toolchain": {
                "version": record.version if record else None,
                "path": str(record.path) if record else None,
                "installed": bool(record and record.is_present()),
            },
            "testnet": {
                "running": handle is not None,
                "pid": handle.pid if handle else None,
                "endpoint": handle.endpoint if handle else None,
                "launched_at": handle.launched_at if handle else None,
                "version": handle.version if handle else None,
                "log_file": str(handle.log_file) if handle and handle.log_file else None,
            },
        }
        if json_output:
            console.print_json(data=payload)
            op.success("Reported status as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Component", style="bold")
        table.add_column("State")
        table.add_column("Detail")
        if record is None:
            table.add_row("toolchain", "not installed", "run 'jamctl setup'")
        else:
            state = "installed" if record.is_present() else "missing"
            table.add_row("toolchain", state, f"{record.version} ({record.path})")
        if handle is None:
            table.add_row("testnet", "stopped", "")
        else:
            table.add_row("testnet", "running", f"PID {handle.pid}, RPC {handle.endpoint}")
        console.print(table)
        op.success("Reported status.", changed=0)


# ----------------------------------------------------------------------
# deploy / monitor
# ----------------------------------------------------------------------


@app.command()
def deploy(
    ctx: typer.Context,
    code: Path = typer.Argument(..., help="Path to the service blob (.jam)."),
    amount: str = typer.Option("0", "--amount", help="Initial balance of the service."),
    memo: str = typer.Option("", "--memo", help="Memo passed to the service."),
    min_item_gas: int = typer.Option(
        1_000_000,
        "--min-item-gas",
        "-G",
        help="Minimum gas for accumulating work items.",
    ),
    min_memo_gas: int = typer.Option(
        1_000_000,
        "--min-memo-gas",
        "-g",
        help="Minimum gas for on-transfer memos.",
    ),
    register: str | None = typer.Option(
        None,
        "--register",
        "-r",
        help="Register the service under this name.",
    ),
    rpc: str | None = RPC_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Deploy a service blob to the running testnet."""
    runtime = _get_runtime(ctx)
    _configure_verbosity(verbose)
    endpoint = _resolve_endpoint(runtime, rpc)
    request = DeployRequest(
        code=code,
        amount=amount,
        memo=memo,
        min_item_gas=min_item_gas,
        min_memo_gas=min_memo_gas,
        register=register,
    )

    with runtime.logger.operation(
        "deploy",
        args={
            "code": str(code),
            "amount": amount,
            "min_item_gas": min_item_gas,
            "min_memo_gas": min_memo_gas,
            "register": register,
            "rpc": endpoint,
        },
        target={"kind": "service", "code": str(code)},
    ) as op:
        _check_endpoint(op, endpoint)
        try:
            request.validate()
            tools = runtime.tools(_require_toolchain(runtime))
            tools.resolve(tools.jamt)
            runtime.prober.require_ready(
                endpoint,
                timeout=runtime.config.readiness.precheck_timeout,
                interval=runtime.config.readiness.interval,
            )
            op.add_step("readiness", status="success", detail=endpoint)

            console.print(f"[cyan]→[/cyan] Deploying service: [yellow]{code}[/yellow]")
            if verbose:
                console.print(f"  RPC: [dim]{endpoint}[/dim]")
                console.print(f"  Amount: {amount}")
                console.print(f"  Min item gas: {min_item_gas}")
                console.print(f"  Min memo gas: {min_memo_gas}")
            result = tools.deploy(request, endpoint)
        except (JamctlError, LockTimeoutError) as exc:
            _provider_error(op, exc)

        if result.stdout:
            console.print(result.stdout.rstrip(), markup=False, highlight=False, soft_wrap=True)
        console.print("\n[bold green]✓[/bold green] Service deployed successfully!")
        op.success("Service deployed.", changed=1, context={"rpc": endpoint})


@app.command()
def monitor(
    ctx: typer.Context,
    rpc: str | None = RPC_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Open the interactive testnet monitor (jamtop)."""
    runtime = _get_runtime(ctx)
    _configure_verbosity(verbose)
    endpoint = _resolve_endpoint(runtime, rpc)

    with runtime.logger.operation(
        "monitor",
        args={"rpc": endpoint},
        target={"kind": "testnet", "endpoint": endpoint},
    ) as op:
        _check_endpoint(op, endpoint)
        try:
            tools = runtime.tools(_require_toolchain(runtime))
            tools.resolve(tools.jamtop)
            runtime.prober.require_ready(
                endpoint,
                timeout=runtime.config.readiness.precheck_timeout,
                interval=runtime.config.readiness.interval,
            )
            console.print("[cyan]→[/cyan] Starting JAM testnet monitor...")
            if verbose:
                console.print(f"  RPC: [dim]{endpoint}[/dim]")
            console.print("  Press 'q' to quit\n")
            tools.monitor(endpoint)
        except (JamctlError, LockTimeoutError) as exc:
            _provider_error(op, exc)
        op.success("Monitor exited.", changed=0)


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------

config_app = typer.Typer(help="Inspect jamctl settings.")
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = "\n".join(f"{name}: {item}" for name, item in value.items())
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()
