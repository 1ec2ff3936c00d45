"""Thin CLI wrapper for esk_kernel.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler

from esk_kernel import __version__
from esk_kernel.config import get_settings, print_settings_json
from esk_kernel.errors import EskError
from esk_kernel.features.schema import FeatureSpec

app = typer.Typer(
    name="esk",
    help="ESK kernel builder - resolve, patch, and build kernel variants",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

SpecOption = Annotated[
    Path | None,
    typer.Option(
        "--spec",
        "-s",
        help="Variant file (.yaml/.json); defaults to KSU/SUSFS/LXC/BBG/CLANG_LTO env",
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def configure_logging(level: str) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"esk-kernel version {__version__}")
        raise typer.Exit()


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data))


def _fail(error: EskError, json_output: bool = False) -> NoReturn:
    """Report a pipeline error and exit non-zero."""
    if json_output:
        _print_json({"error": error.to_dict()})
    else:
        console.print(f"[red]Error ({error.code}): {error}[/red]")
    raise typer.Exit(code=1)


def _load_spec(spec_file: Path | None, json_output: bool = False) -> FeatureSpec:
    """Load the FeatureSpec from a variant file or the environment."""
    from esk_kernel.features.io import load_feature_spec
    from esk_kernel.features.schema import feature_spec_from_env

    try:
        if spec_file is None:
            return feature_spec_from_env()
        return load_feature_spec(spec_file)
    except EskError as e:
        _fail(e, json_output)
    except FileNotFoundError:
        console.print(f"[red]File not found: {spec_file}[/red]")
        raise typer.Exit(code=1) from None
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid variant file {spec_file}: {e}[/red]")
        raise typer.Exit(code=1) from None


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override ESK_LOG_LEVEL"),
    ] = None,
) -> None:
    """ESK kernel builder - resolve, patch, and build kernel variants."""
    configure_logging(log_level or get_settings().log_level)


@app.command()
def config(json_output: JsonOption = False) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
        return

    clang_display = str(settings.clang_bin) if settings.clang_bin else "(from PATH)"
    jobs_display = str(settings.jobs) if settings.jobs else "(CPU count)"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Kernel:[/bold]")
    console.print(f"  Kernel name:         {settings.kernel_name}")
    console.print(f"  Defconfig:           {settings.defconfig}")
    console.print(f"  Architecture:        {settings.arch}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Workspace:           {settings.workspace}")
    console.print(f"  Kernel directory:    {settings.kernel_dir}")
    console.print(f"  Patches directory:   {settings.patches_dir}")
    console.print(f"  Sources directory:   {settings.sources_dir}")
    console.print(f"  Output directory:    {settings.out_dir}")
    console.print(f"  Clang bin:           {clang_display}")
    console.print(f"  Database URL:        {settings.db_url}")
    console.print()
    console.print("[bold]Sources:[/bold]")
    console.print(f"  Kernel:              {settings.kernel_repo}")
    console.print(f"  SuSFS:               {settings.susfs_repo}")
    console.print(f"  Fix patches:         {settings.fix_patches_repo}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Build jobs:          {jobs_display}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Fetch timeout:       {settings.fetch_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout}")


@app.command()
def plan(
    spec_file: SpecOption = None,
    json_output: JsonOption = False,
) -> None:
    """Resolve a variant and show its patch plan.

    Companion patch sources needed by the plan are cloned into the
    sources directory; the kernel tree is not touched.
    """
    from esk_kernel.builds.service import create_sources
    from esk_kernel.plan.models import compute_plan_digest
    from esk_kernel.plan.resolver import ResolverOptions, resolve
    from esk_kernel.plan.sources import GitFetcher
    from esk_kernel.variant import variant_name

    settings = get_settings()
    spec = _load_spec(spec_file, json_output)
    sources = create_sources(settings, GitFetcher(timeout=settings.fetch_timeout))

    try:
        resolved = resolve(spec, sources, ResolverOptions.from_settings(settings))
    except EskError as e:
        _fail(e, json_output)

    digest = compute_plan_digest(resolved)
    if json_output:
        _print_json(
            {
                "variant": variant_name(spec),
                "features": spec.to_snapshot(),
                "plan_digest": digest,
                "plan": resolved.to_dict(),
            }
        )
        return

    console.print(f"[bold]Variant:[/bold] {variant_name(spec)}")
    console.print(f"[bold]Plan digest:[/bold] {digest}")
    if resolved.version_token:
        console.print(f"[bold]SuSFS version:[/bold] {resolved.version_token}")
    console.print()
    console.print(f"[bold]Steps ({len(resolved)}):[/bold]")
    for index, step in enumerate(resolved.steps, start=1):
        console.print(f"  {index:3d}. {step.describe()}", markup=False)


@app.command()
def name(
    kernel_version: Annotated[
        str,
        typer.Option("--kernel-version", "-k", help="Kernel version, e.g. 5.10.209"),
    ],
    spec_file: SpecOption = None,
) -> None:
    """Print the package name for a variant."""
    from esk_kernel.variant import package_name

    settings = get_settings()
    spec = _load_spec(spec_file)
    console.print(package_name(spec, settings.kernel_name, kernel_version))


@app.command()
def matrix(
    export_dir: Annotated[
        Path | None,
        typer.Option("--export", help="Write one variant file per combination"),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """List every supported variant."""
    from esk_kernel.features.io import export_feature_spec
    from esk_kernel.features.schema import iter_feature_specs
    from esk_kernel.types import LtoMode
    from esk_kernel.variant import variant_name

    specs = list(iter_feature_specs(tuple(LtoMode)))

    if export_dir is not None:
        export_dir.mkdir(parents=True, exist_ok=True)
        for spec in specs:
            export_feature_spec(spec, export_dir / f"{variant_name(spec)}.yaml")

    if json_output:
        _print_json(
            [{"variant": variant_name(s), "features": s.to_snapshot()} for s in specs]
        )
        return

    console.print(f"[bold]{len(specs)} variant(s):[/bold]")
    for spec in specs:
        console.print(f"  {variant_name(spec)}")
    if export_dir is not None:
        console.print(
            f"[green]Exported {len(specs)} variant file(s) to {export_dir}[/green]"
        )


@app.command()
def build(
    spec_file: SpecOption = None,
    skip_compile: Annotated[
        bool,
        typer.Option("--skip-compile", help="Stop after patching and config"),
    ] = False,
    no_clone: Annotated[
        bool,
        typer.Option("--no-clone", help="Reuse the existing kernel tree"),
    ] = False,
    json_output: JsonOption = False,
) -> None:
    """Run the full pipeline for a variant.

    Resets the workspace, clones the kernel, resolves and applies the
    plan, regenerates the config, and compiles the kernel. Every run is
    recorded in the build history.
    """
    from esk_kernel.builds.install import ScriptInstaller
    from esk_kernel.builds.patcher import GnuPatcher
    from esk_kernel.builds.runner import MakeKernelBuilder
    from esk_kernel.builds.service import run_pipeline
    from esk_kernel.db import (
        create_all_tables,
        get_engine,
        get_session,
        get_session_factory,
    )
    from esk_kernel.plan.sources import GitFetcher

    settings = get_settings()
    spec = _load_spec(spec_file, json_output)

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    factory = get_session_factory(engine)

    # The failed build record is committed before the error is reported
    error: EskError | None = None
    with get_session(factory) as session:
        try:
            result = run_pipeline(
                spec,
                settings,
                fetcher=GitFetcher(timeout=settings.fetch_timeout),
                patcher=GnuPatcher(),
                installer=ScriptInstaller(
                    fetch_timeout=settings.fetch_timeout,
                    run_timeout=settings.fetch_timeout,
                ),
                builder=None if skip_compile else MakeKernelBuilder(settings),
                session=session,
                fetch_kernel=not no_clone,
            )
        except EskError as e:
            error = e
        except Exception as e:
            error = EskError(
                f"Unexpected {type(e).__name__}: {e}", code="internal_error"
            )
    if error is not None:
        _fail(error, json_output)

    if json_output:
        _print_json(
            {
                "build_id": result.build_id,
                "variant": result.variant,
                "plan_digest": result.plan_digest,
                "version_token": result.plan.version_token,
                "applied": len(result.report.applied),
                "skipped": result.report.skipped,
                "config_path": str(result.config_path),
                "kernel_version": result.kernel_version,
                "package_name": result.package_name,
                "image_path": str(result.image_path) if result.image_path else None,
            }
        )
        return

    console.print(f"[green]Variant {result.variant} prepared[/green]")
    console.print(f"  Steps applied:       {len(result.report.applied)}")
    for skipped in result.report.skipped:
        console.print(f"  [yellow]Skipped:[/yellow] {skipped}")
    console.print(f"  Config:              {result.config_path}")
    if result.package_name:
        console.print(f"  Package:             {result.package_name}")
        console.print(f"  Image:               {result.image_path}")


@app.command()
def history(
    variant: Annotated[
        str | None,
        typer.Option("--variant", help="Filter by variant name"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum records to show"),
    ] = 20,
    json_output: JsonOption = False,
) -> None:
    """Show recent pipeline runs."""
    from esk_kernel.builds.service import list_builds
    from esk_kernel.db import (
        create_all_tables,
        get_engine,
        get_session,
        get_session_factory,
    )

    engine = get_engine()
    create_all_tables(engine)

    with get_session(get_session_factory(engine)) as session:
        records = list_builds(session, variant=variant, limit=limit)

        if json_output:
            _print_json([r.to_dict() for r in records])
            return

        if not records:
            console.print("[yellow]No builds recorded[/yellow]")
            return

        console.print(f"[bold]Found {len(records)} build(s):[/bold]")
        console.print()
        for r in records:
            color = "green" if r.is_succeeded() else "red"
            console.print(f"  [{color}]#{r.id} {r.variant}[/{color}] ({r.status})")
            if r.package_name:
                console.print(f"    Package: {r.package_name}")
            if r.error_type:
                console.print(f"    Error: {r.error_type}: {r.error_message}")
            console.print()


if __name__ == "__main__":
    app()
