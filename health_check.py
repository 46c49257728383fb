#!/usr/bin/env python3
"""
Health check and monitoring script for the learning platform.

Usage:
    python health_check.py [command]

Commands:
    status      - Run a composite health check (default)
    sources     - Show data source bookkeeping
    issues      - Show open self-healing issues
    watch       - Continuously monitor (refresh every 30s)
"""

import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from core.config import load_settings
from core.models import HealthStatus
from core.pipeline import LearningPipeline


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    BOLD = "\033[1m"
    END = "\033[0m"


STATUS_COLORS = {
    HealthStatus.HEALTHY: Colors.GREEN,
    HealthStatus.DEGRADED: Colors.YELLOW,
    HealthStatus.UNHEALTHY: Colors.RED,
}

SEVERITY_COLORS = {
    "critical": Colors.RED,
    "high": Colors.RED,
    "medium": Colors.YELLOW,
    "low": Colors.CYAN,
}


def format_timestamp(dt: Optional[datetime]) -> str:
    if not dt:
        return "N/A"
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        return f"{seconds/60:.1f}m"
    elif seconds < 86400:
        return f"{seconds/3600:.1f}h"
    else:
        return f"{seconds/86400:.1f}d"


def format_status_indicator(status: HealthStatus) -> str:
    symbol = "○" if status is HealthStatus.UNHEALTHY else "●"
    return f"{STATUS_COLORS[status]}{symbol}{Colors.END}"


async def show_health_status(pipeline: LearningPipeline):
    report = await pipeline.run_health_check()

    print(f"{Colors.BOLD}📊 Learning Platform Health{Colors.END}")
    print("=" * 60)
    color = STATUS_COLORS[report.overall]
    print(f"Overall: {color}{report.overall.value.upper()}{Colors.END}")
    print(f"Checked: {Colors.WHITE}{format_timestamp(report.checked_at)}{Colors.END} ({report.duration_ms} ms)")
    print()

    for signal in report.signals:
        line = f"{format_status_indicator(signal.status)} {Colors.BOLD}{signal.component}{Colors.END}"
        if signal.latency_ms is not None:
            line += f"  {signal.latency_ms} ms"
        if signal.error_count:
            line += f"  {Colors.YELLOW}{signal.error_count} errors{Colors.END}"
        print(line)
        if signal.detail:
            print(f"   {signal.detail}")
    print()

    if report.overall is HealthStatus.HEALTHY:
        print(f"{Colors.GREEN}✅ System Healthy{Colors.END}")
    elif report.overall is HealthStatus.DEGRADED:
        print(f"{Colors.YELLOW}⚠️  System Degraded{Colors.END}")
    else:
        print(f"{Colors.RED}❌ System Unhealthy{Colors.END}")


async def show_sources(pipeline: LearningPipeline):
    sources = await pipeline.sources.list()
    now = datetime.now(timezone.utc)

    print(f"{Colors.BOLD}📡 Data Sources{Colors.END}")
    print("=" * 60)
    if not sources:
        print(f"{Colors.YELLOW}No sources registered{Colors.END}")
        return

    for source in sources:
        active = f"{Colors.GREEN}active{Colors.END}" if source.is_active else f"{Colors.RED}inactive{Colors.END}"
        print(f"{Colors.BOLD}{source.name}{Colors.END} ({active}, every {source.fetch_frequency})")
        if source.last_fetch:
            ago = format_duration((now - source.last_fetch).total_seconds())
            print(f"   Last fetch: {format_timestamp(source.last_fetch)} ({ago} ago)")
        else:
            print(f"   Last fetch: {Colors.RED}never{Colors.END}")
        if source.error_count:
            print(f"   Errors: {Colors.RED}{source.error_count}{Colors.END}  {source.last_error or ''}")
        print()


async def show_issues(pipeline: LearningPipeline):
    issues = await pipeline.healer.open_issues(limit=50)

    print(f"{Colors.BOLD}🚨 Open Self-Healing Issues{Colors.END}")
    print("=" * 60)
    if not issues:
        print(f"{Colors.GREEN}No open issues{Colors.END}")
        return

    for issue in issues:
        color = SEVERITY_COLORS.get(issue.severity.value, Colors.WHITE)
        human = f" {Colors.RED}[human]{Colors.END}" if issue.requires_human else ""
        print(f"{color}● {issue.severity.value.upper()}{Colors.END} {Colors.BOLD}{issue.issue_type}{Colors.END} ({issue.component}){human}")
        print(f"   Opened: {format_timestamp(issue.created_at)}")
        if issue.issue_description:
            print(f"   {issue.issue_description}")
        if issue.healing_action:
            print(f"   Last action: {issue.healing_action} - {issue.healing_result}")
        print()


async def watch_status(pipeline: LearningPipeline):
    try:
        while True:
            os.system("clear" if os.name == "posix" else "cls")
            print(f"{Colors.BOLD}📊 Live Health Monitor{Colors.END}")
            print(f"Updated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
            print()
            await show_health_status(pipeline)
            print()
            print(f"{Colors.BLUE}Refreshing in 30 seconds... (Ctrl+C to exit){Colors.END}")
            await asyncio.sleep(30)
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Monitoring stopped{Colors.END}")


async def main():
    command = sys.argv[1] if len(sys.argv) > 1 else "status"

    commands = {
        "status": show_health_status,
        "sources": show_sources,
        "issues": show_issues,
        "watch": watch_status,
    }

    if command not in commands:
        print(f"Unknown command: {command}")
        print(f"Available commands: {', '.join(commands.keys())}")
        print()
        print(__doc__)
        sys.exit(1)

    try:
        async with LearningPipeline(load_settings()) as pipeline:
            await commands[command](pipeline)
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted{Colors.END}")
    except Exception as e:
        print(f"{Colors.RED}Error: {e}{Colors.END}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
