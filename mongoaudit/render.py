"""Text and JSON renderers for crawl reports."""

from __future__ import annotations

import json
from typing import Any

from .models import CollectionSummary, CrawlMode, DatabaseReport, ServerReport

INDENT = "  "


def render_report(report: ServerReport | DatabaseReport) -> list[str]:
    """Return the report as ordered text lines, one blank line after each database."""

    if isinstance(report, DatabaseReport):
        return _database_lines(report)
    lines: list[str] = []
    if report.server:
        lines.append(f"Server: {report.server}")
    if report.server_version:
        lines.append(f"Server version: {report.server_version}")
    if report.error:
        lines.append(f"(could not list databases: {report.error})")
    elif report.mode is CrawlMode.SERVER:
        found = f"Found {report.total_databases} database(s) on this server"
        if len(report.databases) != report.total_databases:
            found += f", showing {len(report.databases)}"
        lines.append(f"{found}:")
    lines.append("")
    for database in report.databases:
        lines.extend(_database_lines(database))
    return lines


def render_text(report: ServerReport | DatabaseReport) -> str:
    return "\n".join(render_report(report))


def render_json(report: ServerReport | DatabaseReport) -> str:
    """Serialize the report for machine consumers."""

    if isinstance(report, DatabaseReport):
        payload: dict[str, Any] = _database_payload(report)
    else:
        payload = {
            "server": report.server,
            "server_version": report.server_version,
            "mode": report.mode.value,
            "total_databases": report.total_databases,
            "total_size": report.total_size,
            "error": report.error,
            "databases": [_database_payload(database) for database in report.databases],
        }
    return json.dumps(payload, indent=2)


def format_size(size: int) -> str:
    return f"{size / 1024 / 1024:.2f} MB"


def _database_lines(report: DatabaseReport) -> list[str]:
    header = report.name if report.size_on_disk is None else f"{report.name}: {format_size(report.size_on_disk)}"
    lines = [header]
    if not report.accessible or report.error:
        lines.append(f"{INDENT}(could not access: {report.error})")
        lines.append("")
        return lines
    total = f"Total documents: {report.total_documents}"
    if not report.counts_complete:
        total += " (incomplete)"
    lines.append(f"{INDENT}Collections: {report.collection_count}, {total}")
    for summary in report.collections:
        lines.extend(_collection_lines(summary))
    lines.append("")
    return lines


def _collection_lines(summary: CollectionSummary) -> list[str]:
    if summary.count is None:
        return [f"{INDENT}{summary.name}: ? document(s) (could not access: {summary.error})"]
    lines = [f"{INDENT}{summary.name}: {summary.count} document(s)"]
    for index, sample in enumerate(summary.samples, start=1):
        lines.append(f"{INDENT * 2}{index}. {sample}")
    if summary.truncated:
        lines.append(f"{INDENT * 2}(showing {len(summary.samples)} of {summary.count})")
    return lines


def _database_payload(report: DatabaseReport) -> dict[str, Any]:
    return {
        "name": report.name,
        "size_on_disk": report.size_on_disk,
        "accessible": report.accessible,
        "error": report.error,
        "collection_count": report.collection_count,
        "total_documents": report.total_documents,
        "collections": [
            {
                "name": summary.name,
                "count": summary.count,
                "samples": list(summary.samples),
                "truncated": summary.truncated,
                "error": summary.error,
            }
            for summary in report.collections
        ],
    }


__all__ = ["format_size", "render_json", "render_report", "render_text"]
