"""
Command Line Interface for the macOS Hardening Tool.

Provides CLI commands for auditing the system, applying the hardening
checklist and inspecting the rules it contains.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .core.models import HardeningRule, RuleSeverity
from .core.orchestrator import HardeningTool, PreflightError
from .rules.loader import PACKAGES_CATEGORY
from .utils.logging_config import setup_logging
from .version_info import __version__


console = Console()
log_console = Console(stderr=True)

STATUS_COLORS = {
    "pass": "green",
    "applied": "cyan",
    "fail": "red",
    "error": "yellow",
    "skipped": "dim",
    "not_applicable": "dim"
}

SEVERITY_COLORS = {
    "critical": "red bold",
    "high": "red",
    "medium": "yellow",
    "low": "blue",
    "info": "dim"
}


def run_preflight(tool: HardeningTool, require_privileges: bool = True):
    """Exit with an error if the system or privileges are not suitable."""
    try:
        tool.preflight(require_privileges=require_privileges)
    except PreflightError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _split(value: Optional[str]):
    return [v.strip() for v in value.split(',') if v.strip()] if value else None


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(dir_okay=False), help="Path to configuration file")
@click.option('--verbose', '-v', is_flag=True, help="Show every command that is run")
@click.option('--log-file', type=click.Path(dir_okay=False), help="Also write a full log to this file")
@click.pass_context
def cli(ctx, config: Optional[str], verbose: bool, log_file: Optional[str]):
    """
    macOS Hardening Tool

    Runs an ordered checklist of native macOS administrative commands
    (firewall, FileVault, Gatekeeper, sharing, privacy, updates, ...)
    to bring a Mac into a more secure configuration.
    """
    ctx.ensure_object(dict)

    try:
        tool = HardeningTool(config_path=config)
    except Exception as e:
        console.print(f"[red]Failed to initialize hardening tool: {e}[/red]")
        sys.exit(1)

    log_config = tool.config.get("logging", {})
    level = "DEBUG" if verbose else log_config.get("level", "INFO")
    setup_logging(level, log_file or log_config.get("file"), console=log_console)

    ctx.obj['tool'] = tool
    ctx.obj['verbose'] = verbose


@cli.command()
@click.option('--categories', '-c', help="Comma-separated rule categories to audit")
@click.option('--rules', '-r', help="Comma-separated specific rule IDs to audit")
@click.option('--output', '-o', type=click.Path(dir_okay=False), help="Save results as JSON")
@click.option('--format', 'output_format', type=click.Choice(['json', 'table', 'summary']),
              default='table', help="Output format")
@click.pass_context
def audit(ctx, categories: Optional[str], rules: Optional[str],
          output: Optional[str], output_format: str):
    """
    Audit current system compliance against the checklist.

    Read-only: reports which settings differ without changing them.
    """
    tool: HardeningTool = ctx.obj['tool']
    run_preflight(tool)

    if output_format == 'json':
        try:
            result = tool.audit(categories=_split(categories), rule_ids=_split(rules))
        except Exception as e:
            log_console.print(f"[red]Audit failed: {e}[/red]")
            sys.exit(1)
        click.echo(json.dumps(result.run.model_dump(mode="json"), indent=2))
        if output:
            _save_json_results(result, output)
        return

    _print_system_panel(tool, "System Audit")

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True
        ) as progress:
            progress.add_task("Running security audit...", total=None)
            result = tool.audit(categories=_split(categories), rule_ids=_split(rules))
    except Exception as e:
        console.print(f"[red]Audit failed: {e}[/red]")
        sys.exit(1)

    if output_format == 'summary':
        _display_summary(result)
    else:
        _display_table(result)

    if output:
        _save_json_results(result, output)
        console.print(f"\n[green]Results saved to: {output}[/green]")


@cli.command()
@click.option('--categories', '-c', help="Comma-separated rule categories to apply")
@click.option('--rules', '-r', help="Comma-separated specific rule IDs to apply")
@click.option('--interactive', '-i', is_flag=True, help="Prompt before changing each setting")
@click.option('--dry-run', '-n', is_flag=True, help="Show what would be changed without applying")
@click.option('--skip-packages', is_flag=True, help="Do not install Homebrew packages")
@click.option('--output', '-o', type=click.Path(dir_okay=False), help="Save results as JSON")
@click.option('--force', is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def apply(ctx, categories: Optional[str], rules: Optional[str], interactive: bool,
          dry_run: bool, skip_packages: bool, output: Optional[str], force: bool):
    """
    Apply the hardening checklist to the system.

    Settings that are already correct are left alone; everything else is
    changed and then verified.
    """
    tool: HardeningTool = ctx.obj['tool']
    run_preflight(tool)

    if skip_packages:
        skip = list(tool.config["hardening"].get("skip_categories") or [])
        skip.append(PACKAGES_CATEGORY)
        tool.config["hardening"]["skip_categories"] = skip

    if not force and not dry_run:
        console.print(
            "[yellow]Warning: This will make changes to your system configuration![/yellow]\n"
            "Some changes (Bluetooth off, all incoming connections blocked, "
            "sharing services disabled) may affect how you use this Mac.\n"
        )
        if not click.confirm("Do you want to continue?"):
            console.print("Operation cancelled.")
            return

    _print_system_panel(
        tool, "Applying Hardening Rules",
        f"Mode: {'Dry Run' if dry_run else 'Live Application'}\n"
        f"Interactive: {interactive}"
    )

    def confirm(rule: HardeningRule) -> bool:
        return click.confirm(f"Apply '{rule.title}'?", default=True)

    try:
        result = tool.apply(
            categories=_split(categories),
            rule_ids=_split(rules),
            interactive=interactive,
            dry_run=dry_run,
            confirm=confirm
        )
    except Exception as e:
        console.print(f"[red]Hardening application failed: {e}[/red]")
        sys.exit(1)

    _display_apply_results(result, dry_run)

    if output:
        _save_json_results(result, output)
        console.print(f"\n[green]Results saved to: {output}[/green]")


@cli.group()
def rules():
    """Inspect the hardening checklist."""
    pass


@rules.command('list')
@click.option('--category', help="Filter by category")
@click.option('--severity', type=click.Choice([s.value for s in RuleSeverity]),
              help="Filter by severity")
@click.pass_context
def list_rules(ctx, category: Optional[str], severity: Optional[str]):
    """List the hardening rules in execution order."""
    tool: HardeningTool = ctx.obj['tool']

    rule_list = tool.get_available_rules(
        category=category,
        severity=RuleSeverity(severity) if severity else None
    )
    if not rule_list:
        console.print("[yellow]No rules match the given filters[/yellow]")
        return

    _display_rules_table(rule_list)


@rules.command('show')
@click.argument('rule_id')
@click.pass_context
def show_rule(ctx, rule_id: str):
    """Show detailed information about a specific rule."""
    tool: HardeningTool = ctx.obj['tool']

    try:
        rule = tool.get_rule_details(rule_id)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    _display_rule_details(rule)


def _print_system_panel(tool: HardeningTool, heading: str, extra: str = ""):
    info = tool.system_info
    session = tool.session
    body = (
        f"[bold]{heading}[/bold]\n"
        f"OS: {info.product_name} {info.os_version}"
        + (f" ({info.build_version})" if info.build_version else "") + "\n"
        f"Architecture: {info.architecture}\n"
        f"Hostname: {info.hostname}\n"
        f"User: {session.invoking_user or 'unknown'}"
        f"{' (via root)' if session.started_elevated else ''}"
    )
    if extra:
        body += "\n" + extra
    console.print(Panel(body, title="System Information"))


def _display_summary(result):
    """Display a summary of hardening results."""
    run = result.run

    table = Table(title="Hardening Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Overall Score", f"{run.overall_score:.1f}%")
    table.add_row("Total Rules", str(run.total_rules))
    table.add_row("Compliant", f"[green]{run.passed_rules}[/green]")
    table.add_row("Applied", f"[cyan]{run.applied_rules}[/cyan]" if run.applied_rules else "0")
    table.add_row("Failed", f"[red]{run.failed_rules}[/red]" if run.failed_rules else "0")
    table.add_row("Errors", f"[yellow]{run.error_rules}[/yellow]" if run.error_rules else "0")
    table.add_row("Skipped", str(run.skipped_rules))

    console.print(table)

    critical_failures = result.critical_failures
    if critical_failures:
        console.print("\n[red bold]Critical Failures:[/red bold]")
        for failure in critical_failures:
            console.print(f"  • {failure.rule_title}")


def _display_table(result):
    """Display detailed results in table format."""
    table = Table(title="Hardening Results")
    table.add_column("Rule ID", style="dim")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Severity")
    table.add_column("Message", max_width=50)

    for rule_result in result.run.rule_results:
        status_color = STATUS_COLORS.get(rule_result.status.value, "white")
        severity_color = SEVERITY_COLORS.get(rule_result.severity.value, "white")

        table.add_row(
            rule_result.rule_id,
            rule_result.rule_title,
            f"[{status_color}]{rule_result.status.value.upper()}[/{status_color}]",
            f"[{severity_color}]{rule_result.severity.value.upper()}[/{severity_color}]",
            rule_result.message or ""
        )

    console.print(table)
    _display_summary(result)


def _display_apply_results(result, dry_run: bool):
    """Display results from hardening application."""
    mode_text = "DRY RUN - " if dry_run else ""
    console.print(f"\n[bold]{mode_text}Hardening Application Complete[/bold]")

    _display_table(result)

    if dry_run:
        return

    if result.run.success:
        console.print("\n[green]✓ Hardening applied successfully![/green]")
    else:
        console.print("\n[yellow]⚠ Hardening completed with issues[/yellow]")
    console.print(f"Run ID: {result.run.run_id}")

    if result.restart_required:
        console.print("\n[bold]The following settings require a restart to take full effect:[/bold]")
        for label in result.restart_required:
            console.print(f"  • {label}")
        console.print("It's recommended to restart your Mac now.")


def _save_json_results(result, output_path: str):
    """Save results to JSON file."""
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    with open(output_file, 'w') as f:
        json.dump(result.run.model_dump(mode="json"), f, indent=2)


def _display_rules_table(rule_list):
    """Display available rules in table format."""
    table = Table(title="Hardening Checklist")
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Category")
    table.add_column("Severity")
    table.add_column("Runs As")

    for rule in rule_list:
        severity_color = SEVERITY_COLORS.get(rule.severity.value, "white")

        table.add_row(
            rule.id,
            rule.title,
            rule.category,
            f"[{severity_color}]{rule.severity.value.upper()}[/{severity_color}]",
            "user" if rule.run_as_user else ("root" if rule.privileged else "current")
        )

    console.print(table)


def _display_rule_details(rule):
    """Display detailed information about a specific rule."""
    lines = [
        f"[bold]{rule.title}[/bold]\n",
        f"[dim]ID:[/dim] {rule.id}",
        f"[dim]Category:[/dim] {rule.category}",
        f"[dim]Severity:[/dim] {rule.severity.value.upper()}",
    ]
    if rule.cis_benchmark:
        lines.append(f"[dim]CIS Benchmark:[/dim] {rule.cis_benchmark}")
    if rule.requires_restart:
        lines.append("[dim]Requires restart:[/dim] yes")
    if rule.description:
        lines.append(f"\n[dim]Description:[/dim]\n{rule.description.strip()}")
    if rule.service:
        lines.append(f"\n[dim]launchd service:[/dim] system/{rule.service}")
    if rule.audit_checks:
        lines.append("\n[dim]Audit:[/dim]")
        for check in rule.audit_checks:
            expect = f" ({check.match.value} '{check.expected_output}')" if check.expected_output else ""
            lines.append(f"  $ {check.command}{expect}")
    if rule.apply_commands:
        lines.append("\n[dim]Apply:[/dim]")
        for command in rule.apply_commands:
            lines.append(f"  $ {command}")

    console.print(Panel("\n".join(lines), title="Rule Details"))

    if rule.remediation_steps:
        console.print("\n[bold]Remediation Steps:[/bold]")
        for i, step in enumerate(rule.remediation_steps, 1):
            console.print(f"{i}. {step}")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
