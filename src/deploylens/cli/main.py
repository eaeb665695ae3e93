"""DeployLens CLI -- incident forensics and deployment tracking from the terminal."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import click

from deploylens import __version__
from deploylens.cli.http import DEFAULT_API_URL, api_request
from deploylens.cli.output import (
    print_detail,
    print_error,
    print_json,
    print_recommendations,
    print_table,
)


@click.group()
@click.option(
    "--api-url",
    envvar="DEPLOYLENS_API_URL",
    default=DEFAULT_API_URL,
    help="Base URL of the DeployLens API.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format.",
)
@click.version_option(version=__version__, prog_name="deploylens")
@click.pass_context
def cli(ctx: click.Context, api_url: str, output_format: str) -> None:
    """DeployLens -- find the change behind a production incident."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url
    ctx.obj["format"] = output_format


def _parse_time(value: str | None) -> datetime:
    if value is None:
        return datetime.now(UTC)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _object_or_exit(
    ctx: click.Context, data: dict[str, Any] | list[Any] | None
) -> dict[str, Any]:
    """Return ``data`` if the API answered with a JSON object, else exit with status 1."""
    if isinstance(data, dict):
        return data
    if data is not None:
        print_error("Unexpected response from the DeployLens API: expected a JSON object.")
    ctx.exit(1)


def _deployment_rows(deployments: list[dict[str, Any]]) -> list[list[str]]:
    rows = []
    for d in deployments:
        commit = d.get("commit", {})
        rows.append(
            [
                d.get("id", ""),
                str(commit.get("hash", ""))[:8],
                d.get("status", ""),
                f"{d.get('risk', {}).get('score', 0.0):.2f}",
                str(len(d.get("anomalies", []))),
                d.get("created_at", ""),
            ]
        )
    return rows


_DEPLOYMENT_HEADERS = ["ID", "Commit", "Status", "Risk", "Anomalies", "Created"]


@cli.command()
@click.option(
    "--time", "incident_time", default=None, help="Incident time (ISO-8601). Default: now."
)
@click.option(
    "--lookback", default=None, type=float, help="Hours to look back. Default: server setting."
)
@click.option(
    "--file", "affected_files", multiple=True, help="File known to be affected (repeatable)."
)
@click.pass_context
def analyze(
    ctx: click.Context,
    incident_time: str | None,
    lookback: float | None,
    affected_files: tuple[str, ...],
) -> None:
    """Rank the commits most likely to have caused an incident."""
    when = _parse_time(incident_time)
    report = api_request(
        ctx,
        "POST",
        "/forensics/analyze",
        json_body={
            "incident_time": when.isoformat(),
            "lookback_hours": lookback,
            "affected_files": list(affected_files),
        },
    )
    report = _object_or_exit(ctx, report)

    if ctx.obj["format"] == "json":
        print_json(report)
        return

    impact = report.get("impact_analysis", {})
    click.echo(f"Incident at {report.get('incident_time')}")
    print_detail("Commits analyzed", report.get("commits_analyzed", 0))
    print_detail("Suspicious commits", impact.get("total_suspicious_commits", 0))
    print_detail("High-risk commits", impact.get("high_risk_commits", 0))
    print_detail("Authors involved", impact.get("authors_involved", 0))

    commits = report.get("suspicious_commits", [])
    if commits:
        print_table(
            ["Commit", "Score", "Author", "Message", "Factors"],
            [
                [
                    c.get("short_hash", ""),
                    f"{c.get('risk_score', 0.0):.2f}",
                    c.get("author", ""),
                    c.get("message", "")[:50],
                    ", ".join(c.get("risk_factors", [])),
                ]
                for c in commits
            ],
        )
    print_recommendations(report.get("recommendations", []))


@cli.command()
@click.option("--history", is_flag=True, help="Show archived deployments instead of active ones.")
@click.option("--limit", default=50, type=int, show_default=True, help="History size.")
@click.pass_context
def deployments(ctx: click.Context, history: bool, limit: int) -> None:
    """List active (or archived) deployments."""
    if history:
        data = api_request(ctx, "GET", "/deployments/history", params={"limit": limit})
    else:
        data = api_request(ctx, "GET", "/deployments")
    data = _object_or_exit(ctx, data)

    if ctx.obj["format"] == "json":
        print_json(data)
        return
    items = data.get("deployments", [])
    if not items:
        click.echo("No deployments.")
        return
    print_table(_DEPLOYMENT_HEADERS, _deployment_rows(items))


@cli.command()
@click.argument("deployment_id")
@click.pass_context
def deployment(ctx: click.Context, deployment_id: str) -> None:
    """Show one deployment with its anomalies and correlation."""
    data = api_request(ctx, "GET", f"/deployments/{deployment_id}")
    data = _object_or_exit(ctx, data)

    if ctx.obj["format"] == "json":
        print_json(data)
        return
    commit = data.get("commit", {})
    risk = data.get("risk", {})
    click.echo(f"Deployment {data.get('id')}")
    print_detail("Status", data.get("status"))
    print_detail("Commit", f"{commit.get('hash', '')[:8]} {commit.get('message', '')}")
    print_detail("Author", commit.get("author", ""))
    print_detail("Risk", f"{risk.get('score', 0.0):.2f} ({', '.join(risk.get('factors', []))})")
    correlation = data.get("correlation") or {}
    if correlation:
        print_detail(
            "Correlation",
            f"{correlation.get('confidence', 0.0):.2f} "
            f"({len(correlation.get('alerts', []))} alerts)",
        )
    anomalies = data.get("anomalies", [])
    if anomalies:
        print_table(
            ["Type", "Severity", "Message"],
            [[a.get("type", ""), a.get("severity", ""), a.get("message", "")] for a in anomalies],
        )


@cli.command()
@click.pass_context
def incidents(ctx: click.Context) -> None:
    """List incidents raised by failed deployments."""
    data = api_request(ctx, "GET", "/incidents")
    data = _object_or_exit(ctx, data)

    if ctx.obj["format"] == "json":
        print_json(data)
        return
    items = data.get("incidents", [])
    if not items:
        click.echo("No incidents.")
        return
    print_table(
        ["ID", "Deployment", "Severity", "Title"],
        [
            [
                i.get("id", ""),
                i.get("deployment_id") or "",
                i.get("severity", ""),
                i.get("title", ""),
            ]
            for i in items
        ],
    )


@cli.command()
@click.argument("app_factory")
@click.option("--host", default=None, help="API server host.")
@click.option("--port", default=None, type=int, help="API server port.")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development.")
def serve(app_factory: str, host: str | None, port: int | None, reload: bool) -> None:
    """Start the API server from APP_FACTORY ("module:callable" returning a FastAPI app)."""
    import uvicorn

    from deploylens.config import settings
    from deploylens.observability.logging import configure_logging

    configure_logging(settings.log_level, json_logs=settings.log_format == "json")
    uvicorn.run(
        app_factory,
        factory=True,
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


if __name__ == "__main__":
    cli()
