"""Gateroute CLI - Command line interface."""

from __future__ import annotations

import json
import os
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

CONTROLLER_CHOICES = ["alb", "nlb"]


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Log level (default: from GATEROUTE_LOG_LEVEL or info)",
)
@click.pass_context
def main(ctx: click.Context, config_file: str | None, verbose: bool, log_level: str | None):
    """Gateroute - Gateway API route attachment and precedence compiler.

    Reads Gateway API manifests and shows how a Gateway's listeners accept
    routes and in which order the resulting rules are evaluated.

    Examples:

        gateroute compile cluster.yaml --gateway default/web

        gateroute listeners cluster.yaml --controller nlb

        gateroute rewrite /foo/bar --prefix /foo --replace /cat

    Use 'gateroute COMMAND --help' for more info on specific commands.
    """
    from gateroute.core.config import clear_config, flatten_config, get_config, load_config_from_file
    from gateroute.core.logging import configure_logging

    if config_file:
        try:
            file_config = flatten_config(load_config_from_file(config_file))
        except (OSError, ValueError) as e:
            console.print(f"[red]Failed to load config: {escape(str(e))}[/red]")
            sys.exit(1)
        for key, value in file_config.items():
            for section in ("compiler_", "logging_"):
                if key.startswith(section):
                    key = key[len(section):]
                    break
            os.environ[f"GATEROUTE_{key.upper()}"] = str(value).lower() if isinstance(value, bool) else str(value)
        clear_config()

    cfg = get_config()
    effective_level = "debug" if verbose else (log_level or cfg.logging.log_level)
    configure_logging(effective_level, cfg.logging.log_json)

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


def _load_store(manifests: str):
    from gateroute.errors import ManifestError
    from gateroute.store import InMemoryResourceStore, load_manifests

    try:
        return InMemoryResourceStore.from_manifests(load_manifests(manifests))
    except (OSError, ManifestError) as e:
        console.print(f"[red]Failed to load manifests:[/red] {escape(str(e))}")
        sys.exit(1)


def _select_gateway(store, gateway: str | None):
    from gateroute.model.resources import NamespacedName
    from gateroute.store import GATEWAY

    if gateway is None:
        gateways = store.list(GATEWAY)
        if len(gateways) != 1:
            console.print(
                f"[red]Found {len(gateways)} gateways, select one with --gateway NAMESPACE/NAME[/red]"
            )
            sys.exit(1)
        return gateways[0]

    try:
        key = NamespacedName.parse(gateway)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    found = store.get(GATEWAY, key)
    if found is None:
        console.print(f"[red]Gateway not found:[/red] {key}")
        sys.exit(1)
    return found


def _controller(controller: str | None):
    from gateroute.model.constants import ControllerClass

    return ControllerClass(controller) if controller else None


def _compile(manifests: str, gateway: str | None, controller: str | None, previous=None):
    from gateroute.compiler import GatewayCompiler
    from gateroute.core.config import get_config
    from gateroute.errors import GaterouteError

    store = _load_store(manifests)
    gw = _select_gateway(store, gateway)
    compiler = GatewayCompiler(store, _controller(controller), get_config().compiler)
    try:
        return compiler.compile(gw, previous)
    except GaterouteError as e:
        console.print(f"[red]Compilation failed:[/red] {escape(str(e))}")
        sys.exit(1)


def _print_listeners(result) -> None:
    table = Table(title="Listeners")
    table.add_column("Name", style="cyan")
    table.add_column("Port")
    table.add_column("Protocol")
    table.add_column("Hostname", style="dim")
    table.add_column("Status")
    table.add_column("Message", style="dim")

    for listener_result in result:
        listener = listener_result.listener
        status = (
            "[green]Accepted[/green]"
            if listener_result.valid
            else f"[red]{listener_result.reason.value}[/red]"
        )
        table.add_row(
            escape(listener.name),
            str(listener.port),
            escape(listener.protocol),
            escape(listener.hostname or "*"),
            status,
            escape(listener_result.message),
        )
    console.print(table)


@main.command("compile")
@click.argument("manifests", type=click.Path(exists=True))
@click.option("--gateway", "-g", help="Gateway as NAMESPACE/NAME (optional when only one exists)")
@click.option("--controller", type=click.Choice(CONTROLLER_CHOICES), default=None, help="Controller class")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--strict", is_flag=True, help="Exit with status 1 when anything was rejected")
@click.option(
    "--previous",
    type=click.Path(exists=True),
    default=None,
    help="Manifests of the previous state, to plan cleanup of changed rules",
)
def compile_command(
    manifests: str,
    gateway: str | None,
    controller: str | None,
    json_output: bool,
    strict: bool,
    previous: str | None,
):
    """Compile a Gateway and print its ordered rule table."""
    from gateroute.compiler import entry_transforms

    previous_result = _compile(previous, gateway, controller) if previous else None
    result = _compile(manifests, gateway, controller, previous_result)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print(
            f"\n[bold]Gateway:[/bold] {result.gateway.namespaced_name} "
            f"([cyan]{result.controller_class.value}[/cyan])\n"
        )
        _print_listeners(result.listeners)

        failures = result.attachment.failed_attachments
        route_failures = result.load.failures + result.load.unresolved_refs
        rule_errors = result.rule_validation_errors
        if failures or route_failures or rule_errors:
            table = Table(title="Route Problems")
            table.add_column("Route", style="cyan")
            table.add_column("Parent / Rule", style="dim")
            table.add_column("Reason", style="red")
            table.add_column("Message", style="dim")
            for failure in failures:
                table.add_row(
                    str(failure.route.route_identifier),
                    escape(str(failure.parent_ref)) if failure.parent_ref else "",
                    failure.reason.value,
                    escape(failure.message),
                )
            for failure in route_failures:
                table.add_row(
                    str(failure.route.route_identifier),
                    f"rule {failure.rule_index}" if failure.rule_index is not None else "",
                    failure.reason.value,
                    escape(failure.message),
                )
            for item in rule_errors:
                table.add_row(
                    item["route"],
                    f"rule {item['rule_index']}",
                    "InvalidRule",
                    escape("; ".join(item["errors"])),
                )
            console.print(table)

        for port, entries in sorted(result.rules_by_port.items()):
            table = Table(title=f"Rules for port {port}")
            table.add_column("#", justify="right")
            table.add_column("Route", style="cyan")
            table.add_column("Rule/Match")
            table.add_column("Hostnames", style="dim")
            table.add_column("Backends")
            table.add_column("Transforms", style="dim")
            for position, entry in enumerate(entries, start=1):
                match = "-" if entry.match is None else str(entry.match_index)
                backends = ", ".join(f"{b.target}:{b.port} ({b.weight})" for b in entry.rule.backends)
                transforms = ", ".join(
                    f"{t.rewrite.regex} -> {t.rewrite.replace}" for t in entry_transforms(entry)
                )
                table.add_row(
                    str(position),
                    str(entry.route.route_identifier),
                    f"{entry.rule_index}/{match}",
                    escape(", ".join(entry.hostnames) or "*"),
                    escape(backends or "redirect"),
                    escape(transforms),
                )
            console.print(table)

        if not result.rules_by_port:
            console.print("[dim]No routes attached[/dim]")

        if result.cleanup:
            table = Table(title="Cleanup")
            table.add_column("Route", style="cyan")
            table.add_column("Transitions")
            table.add_column("Release", style="red")
            table.add_column("Redirect-only skipped", justify="right")
            for plan in result.cleanup:
                transitions = ", ".join(
                    f"{t.index}: {t.old.value if t.old else '-'} -> {t.new.value if t.new else '-'}"
                    for t in plan.transitions
                )
                release = ", ".join(f"{b.target}:{b.port}" for b in plan.target_groups_to_release)
                table.add_row(
                    str(plan.route),
                    escape(transitions),
                    escape(release),
                    str(plan.redirect_only_rules_skipped),
                )
            console.print(table)

    if strict and result.has_errors:
        sys.exit(1)


@main.command()
@click.argument("manifests", type=click.Path(exists=True))
@click.option("--gateway", "-g", help="Gateway as NAMESPACE/NAME (optional when only one exists)")
@click.option("--controller", type=click.Choice(CONTROLLER_CHOICES), default=None, help="Controller class")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def listeners(manifests: str, gateway: str | None, controller: str | None, json_output: bool):
    """Validate the listeners of a Gateway."""
    from gateroute.core.config import get_config
    from gateroute.errors import GaterouteError
    from gateroute.listeners import ListenerValidator

    store = _load_store(manifests)
    gw = _select_gateway(store, gateway)
    controller_class = _controller(controller) or get_config().compiler.controller_class
    try:
        results = ListenerValidator(store, controller_class).validate(gw)
    except GaterouteError as e:
        console.print(f"[red]Validation failed:[/red] {escape(str(e))}")
        sys.exit(1)

    if json_output:
        click.echo(
            json.dumps(
                {"has_errors": results.has_errors, "listeners": [r.to_dict() for r in results]},
                indent=2,
            )
        )
    else:
        _print_listeners(results)

    if results.has_errors:
        sys.exit(1)


@main.command()
@click.argument("manifests", type=click.Path(exists=True))
@click.option("--gateway", "-g", help="Gateway as NAMESPACE/NAME (optional when only one exists)")
@click.option("--controller", type=click.Choice(CONTROLLER_CHOICES), default=None, help="Controller class")
def report(manifests: str, gateway: str | None, controller: str | None):
    """Show target group and rule usage of the routes attached to a Gateway."""
    from gateroute.classifier import (
        ResourceLimits,
        format_validation_errors,
        generate_resource_report,
        suggest_optimizations,
    )
    from gateroute.core.config import get_config

    result = _compile(manifests, gateway, controller)
    cfg = get_config().compiler
    limits = ResourceLimits(cfg.max_target_groups, cfg.max_rules_per_route)

    for accounting in result.accounting:
        click.echo(generate_resource_report(accounting.route.route_identifier, accounting.usage, limits))
        for suggestion in suggest_optimizations(accounting.usage):
            console.print(f"  [yellow]![/yellow] {escape(suggestion)}")
        for index, errors in sorted(accounting.validation_errors.items()):
            console.print(f"  [red]x[/red] rule {index}: {escape(format_validation_errors(errors))}")
        for error in accounting.limit_errors:
            console.print(f"  [red]x[/red] {escape(error)}")
        click.echo()

    if not result.accounting:
        console.print("[dim]No routes attached[/dim]")

    console.print(
        f"[bold]Total target groups:[/bold] {result.usage.target_groups_required} "
        f"([dim]{result.usage.target_groups_skipped} skipped for redirect-only rules[/dim])"
    )
    for error in result.limit_errors:
        console.print(f"[red]{escape(error)}[/red]")


@main.command()
@click.argument("path")
@click.option("--prefix", help="Original PathPrefix match")
@click.option("--replace", "replacement", help="ReplacePrefixMatch value")
@click.option("--full", "full_path", help="ReplaceFullPath value")
def rewrite(path: str, prefix: str | None, replacement: str | None, full_path: str | None):
    """Preview a URL rewrite against a request path.

    Examples:

        gateroute rewrite /foo/bar --prefix /foo --replace /cat

        gateroute rewrite "/foo?q=1" --full /index.html
    """
    from gateroute.transforms import apply_rewrite, compile_full_path_rewrite, compile_prefix_rewrite

    if full_path is not None:
        config = compile_full_path_rewrite(full_path)
    elif prefix is not None and replacement is not None:
        config = compile_prefix_rewrite(prefix, replacement)
    else:
        console.print("[red]Use --full, or --prefix together with --replace[/red]")
        sys.exit(1)

    console.print(f"[bold]Regex:[/bold]   {escape(config.regex)}")
    console.print(f"[bold]Replace:[/bold] {escape(config.replace)}")
    console.print(f"[bold]Result:[/bold]  {escape(apply_rewrite(config, path))}")


@main.command()
def version():
    """Show version information."""
    from gateroute import __version__

    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.group()
def config():
    """Manage gateroute configuration.

    Configuration can be set via environment variables with GATEROUTE_ prefix.

    Examples:

        gateroute config show            # Show all current settings

        gateroute config export          # Export as environment variables

        gateroute config validate        # Validate current config
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only specific section (compiler, logging)")
def config_show(json_output: bool, section: str | None):
    """Show current configuration settings."""
    from gateroute.core.config import get_config

    display = get_config().to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {escape(section)}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        click.echo(json.dumps(display, indent=2))
        return

    console.print("[bold]Current Configuration[/bold]\n")
    for section_name, settings in display.items():
        table = Table(title=section_name.title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")

        for key, value in settings.items():
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, f"GATEROUTE_{key.upper()}")

        console.print(table)
        console.print()


@config.command("export")
@click.option("--shell", type=click.Choice(["bash", "powershell", "cmd"]), default="bash", help="Shell format")
def config_export(shell: str):
    """Export current configuration as environment variables."""
    from gateroute.core.config import get_config

    env_dict = get_config().to_env_dict()

    click.echo(f"# Gateroute Configuration Export ({shell})")
    for key, value in env_dict.items():
        if shell == "bash":
            click.echo(f'export {key}="{value}"')
        elif shell == "powershell":
            click.echo(f'$env:{key}="{value}"')
        elif shell == "cmd":
            click.echo(f"set {key}={value}")


@config.command("validate")
def config_validate():
    """Validate current configuration.

    Checks that all config values are valid and within expected ranges.
    """
    from pydantic import ValidationError

    from gateroute.core.config import clear_config, get_config

    clear_config()

    try:
        cfg = get_config()
        compiler = cfg.compiler
        logging_cfg = cfg.logging
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        sys.exit(1)

    warnings = []
    if compiler.max_target_groups > 100:
        warnings.append(
            f"max_target_groups ({compiler.max_target_groups}) exceeds the default load balancer quota of 100"
        )
    if compiler.max_rules_per_route > compiler.max_target_groups:
        warnings.append(
            f"max_rules_per_route ({compiler.max_rules_per_route}) is larger than "
            f"max_target_groups ({compiler.max_target_groups})"
        )
    if logging_cfg.log_level == "debug":
        warnings.append("log_level is debug, output will be verbose")

    if warnings:
        console.print("[yellow bold]Configuration Warnings:[/yellow bold]")
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {escape(warning)}")
        console.print()
        console.print("[green]OK - Configuration is valid (with warnings)[/green]")
    else:
        console.print("[green]OK - Configuration is valid[/green]")


if __name__ == "__main__":
    main()
