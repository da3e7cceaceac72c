"""
Payment Approval Intelligence Engine: CLI Entrypoint.

Usage:
    payintel metrics data/transactions.parquet                # KPIs and breakdowns
    payintel insights data/transactions.parquet               # Ranked insights + recommendations
    payintel run data/transactions.parquet --out-dir DIR      # Full pipeline, writes report files
    payintel transactions data/transactions.parquet --page 2  # Paged record listing

Every command accepts --country, --payment-method, --processor, --status,
--date-from and --date-to to filter the record set before analysis.
"""

import functools
import logging

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from payintel.contracts.schemas import DEFAULT_OUTPUT_DIR, DEFAULT_PAGE_SIZE
from payintel.pipeline.filters import filter_transactions, paginate
from payintel.pipeline.ingest import load_transactions
from payintel.pipeline.orchestrator import run as run_pipeline, save_report

console = Console()

SEVERITY_COLORS = {
    "critical": "red",
    "warning": "yellow",
    "info": "cyan",
}

EFFORT_COLORS = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
}


def _filter_options(func):
    """Attach the record filter options and hand the loaded, filtered frame to `func`."""
    @click.argument("path", type=click.Path(dir_okay=False))
    @click.option("--country", default=None, help="Only this country.")
    @click.option("--payment-method", default=None, help="Only this payment method.")
    @click.option("--processor", default=None, help="Only this processor.")
    @click.option("--status", type=click.Choice(["approved", "declined", "all"]), default=None)
    @click.option("--date-from", default=None, help="Inclusive start (YYYY-MM-DD or ISO timestamp).")
    @click.option("--date-to", default=None, help="Inclusive end (YYYY-MM-DD or ISO timestamp).")
    @functools.wraps(func)
    def wrapper(path, country, payment_method, processor, status, date_from, date_to, **kwargs):
        try:
            df = load_transactions(path)
            df = filter_transactions(
                df,
                country=country,
                payment_method=payment_method,
                processor=processor,
                status=status,
                date_from=date_from,
                date_to=date_to,
            )
        except (FileNotFoundError, ValueError, TypeError) as exc:
            raise click.ClickException(str(exc)) from exc
        console.print(f"Analysing [bold]{df.height:,}[/bold] transactions from {path}\n")
        return func(df, **kwargs)
    return wrapper


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def print_kpis(kpis: dict) -> None:
    table = Table(box=box.ROUNDED, show_header=False, title="KPIs")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Transactions", f"{kpis['total_transactions']:,}")
    table.add_row("Approved", f"{kpis['approved']:,}")
    table.add_row("Declined", f"{kpis['declined']:,}")
    table.add_row("Approval rate", f"{kpis['approval_rate']:.1f}%")
    table.add_row("Revenue", f"${kpis['total_revenue']:,.0f}")
    table.add_row("Lost revenue", f"[red]${kpis['lost_revenue']:,.0f}[/red]")
    table.add_row("Recoverable revenue", f"[green]${kpis['recoverable_revenue']:,.0f}[/green]")
    console.print(table)


def print_dimension(title: str, rows: list[dict]) -> None:
    table = Table(box=box.ROUNDED, header_style="bold magenta", title=title)
    table.add_column("Value", style="bold")
    table.add_column("Total", justify="right")
    table.add_column("Approval", justify="right")
    table.add_column("Revenue", justify="right")
    table.add_column("Lost", justify="right")
    for row in rows:
        table.add_row(
            str(row["value"]),
            f"{row['total']:,}",
            f"{row['approval_rate']:.1f}%",
            f"${row['revenue']:,.0f}",
            f"${row['lost_revenue']:,.0f}",
        )
    console.print(table)


def print_transactions(listing: dict) -> None:
    table = Table(box=box.ROUNDED, header_style="bold magenta", title="Transactions")
    table.add_column("ID", style="bold")
    table.add_column("Timestamp")
    table.add_column("Amount", justify="right")
    table.add_column("Country")
    table.add_column("Method")
    table.add_column("Processor")
    table.add_column("Status")
    table.add_column("Decline reason")
    for txn in listing["data"]:
        status_color = "green" if txn["status"] == "approved" else "red"
        table.add_row(
            txn["transaction_id"],
            txn["timestamp"].strftime("%Y-%m-%d %H:%M"),
            f"{txn['amount']:,.2f} {txn['currency']}",
            txn["country"],
            txn["payment_method"],
            txn["processor"],
            f"[{status_color}]{txn['status']}[/{status_color}]",
            txn["decline_reason"] or "",
        )
    console.print(table)
    console.print(
        f"Page {listing['page']} of {listing['total_pages']} "
        f"({listing['total']:,} matching transactions)"
    )


def print_insights(insights: list[dict]) -> None:
    console.rule("[bold green]Insights")
    if not insights:
        console.print("[dim]No anomalies detected.[/dim]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold magenta", expand=True)
    table.add_column("#", style="bold", width=3, justify="right")
    table.add_column("Severity", width=10)
    table.add_column("Type", width=24)
    table.add_column("Title", style="bold")
    table.add_column("Impact", justify="right", width=14)

    for i, insight in enumerate(insights, start=1):
        color = SEVERITY_COLORS.get(insight["severity"], "white")
        table.add_row(
            str(i),
            f"[{color}]{insight['severity'].upper()}[/{color}]",
            insight["type"],
            insight["title"],
            f"${insight['impact']:>12,.0f}",
        )
    console.print(table)

    for insight in insights:
        color = SEVERITY_COLORS.get(insight["severity"], "white")
        console.print(f"\n[bold][{color}]{insight['id']}: {insight['title']}[/{color}][/bold]")
        console.print(f"  {insight['description']}")
        console.print(f"  [italic]{insight['recommendation']}[/italic]")


def print_recommendations(recommendations: list[dict]) -> None:
    console.rule("[bold green]Recommendations")
    if not recommendations:
        console.print("[dim]No recommendations.[/dim]")
        return

    table = Table(box=box.ROUNDED, show_header=True, header_style="bold magenta", expand=True)
    table.add_column("Rank", style="bold", width=4, justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Category", width=28)
    table.add_column("Effort", width=8)
    table.add_column("Impact (Monthly)", justify="right", width=18)

    for rec in recommendations:
        color = EFFORT_COLORS.get(rec["effort"], "white")
        table.add_row(
            str(rec["rank"]),
            rec["title"],
            rec["category"],
            f"[{color}]{rec['effort']}[/{color}]",
            f"${rec['estimated_impact']:>12,.0f}",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def cli(verbose):
    """Payment Approval Intelligence Engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command()
@_filter_options
def metrics(df):
    """Print KPIs and per-dimension breakdowns."""
    from payintel.analytics.metrics import compute_all_metrics

    console.rule("[bold]Metrics[/bold]")
    result = compute_all_metrics(df)
    print_kpis(result["kpis"])
    print_dimension("By payment method", result["by_payment_method"])
    print_dimension("By processor", result["by_processor"])
    print_dimension("By country", result["by_country"])


@cli.command()
@_filter_options
def insights(df):
    """Detect anomalies and rank remediation recommendations."""
    console.rule("[bold]Analytics[/bold]")
    result = run_pipeline(df)
    print_insights(result["insights"])
    print_recommendations(result["recommendations"])


@cli.command()
@_filter_options
@click.option("--page", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--limit", type=click.IntRange(min=1), default=DEFAULT_PAGE_SIZE, show_default=True,
              help="Transactions per page.")
def transactions(df, page, limit):
    """List the filtered transactions one page at a time."""
    print_transactions(paginate(df, page=page, limit=limit))


@cli.command(name="run")
@_filter_options
@click.option("--out-dir", default=DEFAULT_OUTPUT_DIR, show_default=True, help="Report output directory.")
def run_all(df, out_dir):
    """Run the full pipeline and write report files."""
    console.rule("[bold cyan]Payment Approval Intelligence Engine[/bold cyan]")
    result = run_pipeline(df)

    print_kpis(result["metrics"]["kpis"])
    print_insights(result["insights"])
    print_recommendations(result["recommendations"])

    paths = save_report(result, out_dir)
    console.rule("[bold green]Pipeline Complete[/bold green]")
    console.print("\nOutputs:")
    console.print(f"  Report:          {paths['report']}")
    console.print(f"  Insights:        {paths['insights']}")
    console.print(f"  Recommendations: {paths['recommendations']}")


if __name__ == "__main__":
    cli()
