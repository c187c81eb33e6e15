"""Command-line interface for ScopeScan."""

import asyncio
import json
import logging
from pathlib import Path
import sys

import click
from pydantic import ValidationError

from scopescan import __version__
from scopescan.core.config import ScanConfig
from scopescan.core.engine import ScanEngine, SessionHandle
from scopescan.core.errors import InvalidTarget, ScopeRejected
from scopescan.core.result import ModuleKind, ScanResult, SessionState, Severity
from scopescan.probes.wordlist import load_wordlist

MODULE_CHOICES = [kind.value for kind in ModuleKind]
POLL_INTERVAL = 0.5


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """ScopeScan - local vulnerability-assessment scanner.

    Probe a single target's HTTP security headers, open TCP ports and
    hidden directories concurrently.
    """


@cli.command()
@click.argument("target", type=str)
@click.option(
    "--modules",
    "-m",
    multiple=True,
    type=click.Choice(MODULE_CHOICES, case_sensitive=False),
    help="Probe modules to run (default: all)",
)
@click.option("--ports", "-p", default="1-1000", help="Ports to probe", show_default=True)
@click.option(
    "--http-timeout",
    default=10.0,
    type=float,
    help="Per-request deadline in seconds",
    show_default=True,
)
@click.option(
    "--wordlist",
    "-w",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="File with one path per line for directory brute-forcing",
)
@click.option(
    "--rate-limit",
    default=10.0,
    type=float,
    help="Directory brute-force requests per second",
    show_default=True,
)
@click.option(
    "--concurrency-ceiling",
    type=int,
    default=None,
    help="Max simultaneous weighted module work (default: unlimited)",
)
@click.option("--timeout", "-t", type=float, default=None, help="Overall scan timeout in seconds")
@click.option(
    "--allow-private",
    is_flag=True,
    envvar="SCOPESCAN_ALLOW_PRIVATE",
    help="Allow scanning private, loopback and reserved addresses",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Output file for scan results",
)
@click.option(
    "--format",
    "-f",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default="text",
    help="Output format",
    show_default=True,
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def scan(
    target: str,
    modules: tuple[str, ...],
    ports: str,
    http_timeout: float,
    wordlist: Path | None,
    rate_limit: float,
    concurrency_ceiling: int | None,
    timeout: float | None,
    allow_private: bool,
    output: Path | None,
    format: str,
    verbose: bool,
) -> None:
    """Scan TARGET (URL, hostname or IP address).

    Only scan systems you are authorized to test.
    """
    setup_logging(verbose)

    try:
        config = ScanConfig(
            port_range=ports,
            http_timeout=http_timeout,
            dir_wordlist=load_wordlist(wordlist) if wordlist else None,
            dir_rate_limit=rate_limit,
            global_concurrency_ceiling=concurrency_ceiling,
            overall_timeout=timeout,
            allow_private_targets=allow_private,
        )
    except ValidationError as exc:
        click.echo(f"Error: invalid configuration: {exc}", err=True)
        sys.exit(1)

    selection = [ModuleKind(m.lower()) for m in modules] if modules else list(ModuleKind)
    click.echo(f"Starting scan of {target}")
    click.echo(f"Enabled modules: {', '.join(m.value for m in selection)}")

    try:
        result = asyncio.run(run_scan(target, selection, config))
    except (InvalidTarget, ScopeRejected) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nScan interrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        if verbose:
            raise
        sys.exit(1)

    if format == "json":
        output_json(result, output)
    else:
        output_text(result, output)

    if result.state == SessionState.CANCELLED:
        sys.exit(130)
    if result.get_by_severity(Severity.CRITICAL):
        sys.exit(2)  # Critical findings
    if result.state == SessionState.FAILED or result.get_by_severity(Severity.HIGH):
        sys.exit(1)
    sys.exit(0)


async def run_scan(
    target: str,
    modules: list[ModuleKind],
    config: ScanConfig,
    engine: ScanEngine | None = None,
) -> ScanResult:
    """Submit a scan, report progress until it ends, and return its result.

    Ctrl-C cancels the scan; the partial result is still returned.
    """
    async with engine or ScanEngine() as scan_engine:
        handle = await scan_engine.submit_scan(target, modules, config)
        try:
            await _report_progress(scan_engine, handle)
        except (KeyboardInterrupt, asyncio.CancelledError):
            click.echo("\nScan interrupted, cancelling...", err=True)
            scan_engine.cancel_scan(handle)
        return await scan_engine.wait(handle)


async def _report_progress(engine: ScanEngine, handle: SessionHandle) -> None:
    last = None
    while True:
        status = engine.get_status(handle)
        line = ", ".join(f"{r.module.value}={r.status.value}" for r in status.modules)
        snapshot = (line, status.finding_count)
        if snapshot != last:
            click.echo(f"[{status.state.value}] {line} findings={status.finding_count}", err=True)
            last = snapshot
        if status.state.is_terminal:
            return
        await asyncio.sleep(POLL_INTERVAL)


def output_json(result: ScanResult, output_path: Path | None) -> None:
    """Output scan results in JSON format."""
    json_data = result.model_dump(mode="json")
    json_str = json.dumps(json_data, indent=2)

    if output_path:
        output_path.write_text(json_str)
        click.echo(f"Results written to {output_path}")
    else:
        click.echo(json_str)


def output_text(result: ScanResult, output_path: Path | None) -> None:
    """Output scan results in a human-readable console summary."""
    lines: list[str] = []

    lines.append("=" * 80)
    lines.append("SCAN SUMMARY")
    lines.append("=" * 80)
    lines.append(f"Target: {result.target}")
    lines.append(f"Scan ID: {result.session_id}")
    lines.append(f"State: {result.state.value}")
    lines.append(
        f"Duration: {result.scan_duration:.2f}s" if result.scan_duration else "Duration: N/A"
    )
    lines.append("")

    lines.append("MODULES")
    lines.append("-" * 80)
    for record in result.modules:
        reason = f" ({record.reason})" if record.reason else ""
        duration = f"{record.duration:.2f}s" if record.duration is not None else "-"
        lines.append(
            f"  {record.module.value:14} {record.status.value:16} {duration:>8} "
            f"{record.finding_count} findings{reason}"
        )
    lines.append("")

    lines.append("FINDINGS BY SEVERITY")
    lines.append("-" * 80)
    for severity, count in result.summary.by_severity.items():
        lines.append(f"  {severity.value.upper():12} {count}")
    lines.append("")

    if result.findings:
        lines.append("DETAILED FINDINGS")
        lines.append("-" * 80)
        for i, finding in enumerate(result.findings, 1):
            lines.append(f"\n[{i}] {finding.title} - {finding.severity.value.upper()}")
            lines.append(f"    Kind: {finding.kind.value} ({finding.module.value})")
            lines.append(f"    Evidence: {finding.evidence}")
            lines.append(f"    Description: {finding.description}")
            if finding.remediation:
                lines.append(f"    Remediation: {finding.remediation}")
            if finding.confidence.value != "high":
                lines.append(f"    Confidence: {finding.confidence.value}")
    else:
        lines.append("No findings.")

    lines.append("")
    lines.append("=" * 80)

    output_str = "\n".join(lines)

    if output_path:
        output_path.write_text(output_str)
        click.echo(f"Results written to {output_path}")
    else:
        click.echo(output_str)


@cli.command()
def version() -> None:
    """Display version information."""
    click.echo(f"ScopeScan version {__version__}")


if __name__ == "__main__":
    cli()
