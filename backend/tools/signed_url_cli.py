"""Operator commands for signed content capabilities.

Why:
    Support staff need to reproduce what the gateway would sign or accept
    without going through the browser, and operators need a way to mint a
    fresh SIGNED_URL_SECRET. Rotating the secret is the only way to revoke
    outstanding capabilities, since they are never stored.

Usage:
    manara-signed-url issue --content-id 42 --content-type video --user-id <uuid>
    manara-signed-url verify --params '{"contentId": "42", ...}' [--user-id <uuid>]
    manara-signed-url rotate-secret

Notes:
    - `issue` does not check entitlement; it is a debugging aid only.
    - The secret and TTL come from the same environment variables as the
      gateway (SIGNED_URL_SECRET, SIGNED_URL_EXPIRY_HOURS).
"""

from __future__ import annotations

import json
import os
import secrets

import click

from backend.content_access.domain import SIGNABLE_TYPES
from backend.content_access.signed_urls import SignedUrlConfig, issue_capability, parse_capability, verify_capability


def _load_config() -> SignedUrlConfig:
    # Must match the gateway key; the per-process dev fallback never does.
    if not (os.getenv("SIGNED_URL_SECRET") or "").strip():
        raise click.ClickException("SIGNED_URL_SECRET must be set to issue or verify capabilities")
    try:
        return SignedUrlConfig.from_env()
    except RuntimeError as exc:
        raise click.ClickException(str(exc))


@click.group()
def cli() -> None:
    """Issue, verify and rotate signed content capabilities."""


@cli.command("issue")
@click.option("--content-id", required=True)
@click.option("--content-type", required=True, type=click.Choice(sorted(SIGNABLE_TYPES)))
@click.option("--user-id", required=True)
def issue_cmd(content_id: str, content_type: str, user_id: str) -> None:
    """Print signedParams and expiresAt as JSON."""
    try:
        grant = issue_capability(content_id, content_type, user_id, config=_load_config())
    except ValueError as exc:
        raise click.ClickException(str(exc))
    click.echo(json.dumps({"signedParams": grant.capability.to_params(), "expiresAt": grant.expires_at}))


@cli.command("verify")
@click.option("--params", "raw_params", required=True, help="signedParams as a JSON object")
@click.option("--user-id", default=None, help="Also require the capability to belong to this user")
def verify_cmd(raw_params: str, user_id: str | None) -> None:
    """Exit 0 when the capability is valid (and bound to --user-id), else 1."""
    try:
        params = json.loads(raw_params)
    except ValueError:
        raise click.ClickException("--params must be a JSON object")
    capability = parse_capability(params)
    if capability is None:
        click.echo("invalid: missing or malformed fields")
        raise SystemExit(1)
    if not verify_capability(capability, config=_load_config()):
        click.echo("invalid: bad signature or expired")
        raise SystemExit(1)
    if user_id is not None and capability.user_id != user_id:
        click.echo("invalid: issued to a different user")
        raise SystemExit(1)
    click.echo("valid")


@cli.command("rotate-secret")
@click.option("--bytes", "n_bytes", default=32, show_default=True, type=click.IntRange(min=32))
def rotate_secret_cmd(n_bytes: int) -> None:
    """Print a new random secret. Deploying it invalidates every outstanding capability."""
    click.echo(secrets.token_hex(n_bytes))


if __name__ == "__main__":  # pragma: no cover
    cli()
