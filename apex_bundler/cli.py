"""Thin CLI wrapper for apex_bundler.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from apex_bundler import __version__
from apex_bundler.config import Settings, get_settings, print_settings_json

if TYPE_CHECKING:
    from apex_bundler.bundles.io import LoadedGraph
    from apex_bundler.bundles.service import AssemblyResult, BundleOutcome

app = typer.Typer(
    name="apexgen",
    help="APEX Bundler - assemble signed runtime bundles from module declarations",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"apex-bundler version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


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
) -> None:
    """APEX Bundler - assemble signed runtime bundles from module declarations."""
    configure_logging(get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Source root:         {settings.source_root}")
    console.print(f"  Output directory:    {settings.out_dir}")
    console.print(f"  Install root:        {settings.install_root}")
    console.print(f"  Sepolicy directory:  {settings.sepolicy_dir}")
    console.print(f"  Certificate dir:     {settings.default_cert_dir}")
    console.print()
    console.print("[bold]Targets:[/bold]")
    console.print(f"  Target OS:           {settings.target_os}")
    console.print(f"  Architectures:       {', '.join(settings.targets)}")
    bridge = ", ".join(settings.native_bridge_targets) or "(none)"
    console.print(f"  Native bridge:       {bridge}")
    console.print()
    console.print("[bold]Build:[/bold]")
    console.print(f"  Debuggable:          {settings.debuggable}")
    console.print(f"  Flatten bundles:     {settings.flatten_apex}")
    console.print(f"  Unbundled build:     {settings.unbundled_build}")
    console.print(f"  VNDK version:        {settings.vndk_version or '(none)'}")
    console.print(f"  Default certificate: {settings.default_certificate}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Max bundles:         {settings.max_concurrent_bundles}")
    console.print(f"  Action timeout:      {settings.action_timeout}")


DeclarationFile = Annotated[
    Path,
    typer.Argument(help="Module declaration file (YAML or JSON)", exists=True, dir_okay=False),
]
BundleOption = Annotated[
    list[str] | None,
    typer.Option("--bundle", "-b", help="Bundle to process (can be repeated)"),
]


def _load(path: Path, settings: Settings) -> "LoadedGraph":
    """Load a declaration file, exiting with an error message on failure."""
    import yaml
    from pydantic import ValidationError

    from apex_bundler.bundles.io import DeclarationError, load_graph

    try:
        return load_graph(path, settings)
    except ValidationError as e:
        err_console.print(f"[red]Invalid declarations in {path}:[/red]")
        err_console.print(str(e))
    except (DeclarationError, ValueError, yaml.YAMLError) as e:
        err_console.print(f"[red]Error loading {path}: {e}[/red]")
    raise typer.Exit(code=1)


def _assemble(
    path: Path, settings: Settings, bundles: list[str] | None
) -> "tuple[LoadedGraph, AssemblyResult]":
    from apex_bundler.bundles.io import DeclarationError
    from apex_bundler.bundles.service import assemble

    loaded = _load(path, settings)
    try:
        return loaded, assemble(loaded, settings, bundle_names=bundles)
    except DeclarationError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


def _outcome_to_dict(outcome: "BundleOutcome") -> dict[str, Any]:
    plan = outcome.plan
    data: dict[str, Any] = {
        "bundle": outcome.bundle,
        "ok": outcome.ok,
        "fatal": (
            {"code": outcome.fatal.code, "message": str(outcome.fatal)}
            if outcome.fatal
            else None
        ),
        "errors": [str(e) for e in outcome.errors],
    }
    if plan is None:
        return data
    data["flattened"] = plan.flattened
    data["files"] = [
        {
            "module_name": f.module_name,
            "built_file": str(f.built_file),
            "install_dir": f.install_dir,
            "class": f.file_class.value,
            "symlinks": list(f.symlinks),
        }
        for f in plan.files
    ]
    data["outputs"] = {k.value: str(v) for k, v in plan.output_files.items()}
    data["bundle_module_file"] = (
        str(plan.bundle_module_file) if plan.bundle_module_file else None
    )
    data["actions"] = [
        {
            "kind": a.kind.value,
            "description": a.description,
            "outputs": [str(o) for o in a.outputs],
            "command": a.command or None,
            "install": a.install,
        }
        for a in plan.actions
    ]
    return data


def _print_outcome(outcome: "BundleOutcome") -> None:
    if outcome.fatal is not None:
        console.print(f"[red]✗ {outcome.bundle}: {outcome.fatal}[/red]")
        return
    plan = outcome.plan
    status = "[green]✓[/green]" if outcome.ok else "[yellow]![/yellow]"
    console.print(f"{status} [bold]{outcome.bundle}[/bold]")
    console.print(f"    Files: {len(plan.files)}")
    for f in plan.files:
        console.print(f"      {f.path_in_bundle}  ({f.module_name})")
    for payload, path in plan.output_files.items():
        console.print(f"    Output ({payload.value}): {path}")
    console.print(f"    Actions: {len(plan.actions)}")
    for error in outcome.errors:
        console.print(f"    [red]{error}[/red]")


@app.command()
def plan(
    file: DeclarationFile,
    bundles: BundleOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Plan the build actions of bundles without running them.

    Exits non-zero if any bundle has a fatal or reported error.
    """
    settings = get_settings()
    _, result = _assemble(file, settings, bundles)

    if json_output:
        typer.echo(json.dumps([_outcome_to_dict(o) for o in result.outcomes], indent=2))
    else:
        for outcome in result.outcomes:
            _print_outcome(outcome)

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def deps(
    file: DeclarationFile,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the install dependencies recorded for each bundle."""
    settings = get_settings()
    loaded, result = _assemble(file, settings, None)
    table = result.dependency_table

    if json_output:
        output = {b.name: table.dependencies_of(b.name) for b in loaded.bundles}
        typer.echo(json.dumps(output, indent=2))
    else:
        for bundle in loaded.bundles:
            names = table.dependencies_of(bundle.name)
            console.print(f"[bold]{bundle.name}[/bold] ({len(names)} dependencies)")
            for name in names:
                console.print(f"  {name}")

    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def build(
    file: DeclarationFile,
    bundles: BundleOption = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Log actions instead of running them"),
    ] = False,
) -> None:
    """Plan bundles and run their build actions.

    Bundles with fatal or reported errors are not built.
    """
    from apex_bundler.bundles.runner import BuildExecutionError
    from apex_bundler.bundles.service import build_plans

    settings = get_settings()
    loaded, result = _assemble(file, settings, bundles)

    for outcome in result.outcomes:
        if not outcome.ok:
            _print_outcome(outcome)
    plans = [o.plan for o in result.outcomes if o.ok and o.plan is not None]

    try:
        built = build_plans(plans, loaded, settings, dry_run=dry_run)
    except BuildExecutionError as e:
        console.print(f"[red]Build failed ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    for build_result in built:
        label = "Planned" if dry_run else "Built"
        console.print(
            f"[green]✓ {label} {build_result.bundle}[/green] "
            f"({build_result.actions_run} actions)"
        )

    if not result.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
