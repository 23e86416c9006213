"""Monthly and hourly cost estimates for development VMs (USD)."""

from typing import List, Tuple

import click

# (component, monthly, hourly)
COST_BREAKDOWN: List[Tuple[str, float, float]] = [
    ("Standard_B2s VM", 30.37, 0.0416),
    ("Premium SSD (30GB)", 6.14, 0.0084),
    ("Static Public IP", 3.65, 0.0050),
    ("Network (minimal)", 0.00, 0.0),
]

MONTHLY_COST_PER_VM = 40.16
HOURLY_COST_PER_VM = 0.056


def monthly_cost(vm_count: int) -> float:
    return round(vm_count * MONTHLY_COST_PER_VM, 2)


def hourly_cost(vm_count: int) -> float:
    return round(vm_count * HOURLY_COST_PER_VM, 3)


def daily_cost(vm_count: int) -> float:
    return round(vm_count * HOURLY_COST_PER_VM * 24, 2)


def show_cost_breakdown(vm_count: int = 1) -> None:
    """Print the per-VM component costs and the total for ``vm_count`` VMs."""
    click.echo(click.style("\n💰 Cost breakdown (monthly):", fg="white", bold=True))
    for component, monthly, _ in COST_BREAKDOWN:
        click.echo(f"  • {component + ':':<22} ${monthly:.2f}")
    click.echo(f"  {'Total per VM:':<24} ${MONTHLY_COST_PER_VM:.2f}")
    if vm_count > 1:
        click.echo(
            click.style(
                f"  Total for {vm_count} VMs:    ${monthly_cost(vm_count):.2f}",
                fg="yellow",
                bold=True,
            )
        )


def show_running_estimate(running_count: int) -> None:
    """Print what the currently running VMs cost per hour, day and month."""
    click.echo(click.style("\n💰 Cost estimate (running VMs):", fg="white", bold=True))
    click.echo(f"  • Running VMs: {running_count}")
    click.echo(f"  • Hourly:      ${hourly_cost(running_count):.3f}")
    click.echo(f"  • Daily:       ${daily_cost(running_count):.2f}")
    click.echo(f"  • Monthly:     ${monthly_cost(running_count):.2f}")
