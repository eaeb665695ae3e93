"""httpx helpers used by CLI commands to talk to the DeployLens API."""

from __future__ import annotations

from typing import Any

import click
import httpx

from deploylens.cli.output import print_error

DEFAULT_API_URL = "http://localhost:8000/api/v1"
DEFAULT_TIMEOUT = 30.0


def get_client(ctx: click.Context) -> httpx.Client:
    """Client bound to the ``--api-url`` stored on the Click context."""
    return httpx.Client(
        base_url=ctx.obj.get("api_url", DEFAULT_API_URL),
        headers={"Accept": "application/json, application/problem+json"},
        timeout=DEFAULT_TIMEOUT,
    )


def api_request(
    ctx: click.Context,
    method: str,
    path: str,
    *,
    json_body: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
) -> dict[str, Any] | list[Any] | None:
    """Send one request and return the decoded JSON body.

    Transport failures, problem responses and undecodable bodies are
    reported on stderr and yield ``None``.
    """
    query = {k: v for k, v in (params or {}).items() if v is not None}

    try:
        with get_client(ctx) as client:
            response = client.request(method, path, json=json_body, params=query or None)
    except httpx.ConnectError:
        api_url = ctx.obj.get("api_url")
        print_error(f"DeployLens API unreachable at {api_url}. Is `deploylens serve` running?")
        return None
    except httpx.TimeoutException:
        print_error(f"{method} {path} timed out after {DEFAULT_TIMEOUT:g}s.")
        return None
    except httpx.HTTPError as exc:
        print_error(f"HTTP error: {exc}")
        return None

    if response.status_code >= 400:
        print_error(_describe_problem(response))
        return None

    try:
        return response.json()  # type: ignore[no-any-return]
    except ValueError:
        print_error(f"{method} {path} returned a body that is not JSON.")
        return None


def _describe_problem(response: httpx.Response) -> str:
    """One-line summary of an RFC 7807 problem (or plain error) response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return f"API error ({response.status_code}): {response.text}"

    detail = body.get("detail", response.text)
    if response.status_code == 404:
        return f"Not found: {detail}"
    if response.status_code == 422:
        return f"Invalid request: {detail}"
    title = body.get("title")
    if title:
        return f"{title} ({response.status_code}): {detail}"
    return f"API error ({response.status_code}): {detail}"
