from __future__ import annotations

import json
from dataclasses import replace

import click
from flask import Flask

from homeservice.auth import auth_service
from homeservice.db import get_db
from homeservice.domain.validators import validate_registration_payload
from homeservice.errors import AppError
from homeservice.policies import VALID_ROLES
from homeservice.routes.negotiation_routes import negotiation_service


def register_cli(app: Flask) -> None:
    @app.cli.group("users")
    def users_group() -> None:
        """User administration."""

    @users_group.command("create")
    @click.option("--email", required=True)
    @click.option("--password", required=True, prompt=True, hide_input=True)
    @click.option("--role", type=click.Choice(sorted(VALID_ROLES)), default="client", show_default=True)
    @click.option("--first-name", default=None)
    @click.option("--last-name", default=None)
    @click.option("--phone", default=None)
    def users_create(email, password, role, first_name, last_name, phone) -> None:
        try:
            register_input = validate_registration_payload(
                {
                    "email": email,
                    "password": password,
                    "first_name": first_name,
                    "last_name": last_name,
                    "phone": phone,
                }
            )
            user = auth_service().register(get_db(), replace(register_input, role=role))
        except AppError as exc:
            raise click.ClickException(f"{exc.code}: {exc.user_message()}") from exc
        click.echo(f"Created {user.role} {user.email} (id={user.user_id}).")

    @app.cli.group("negotiation")
    def negotiation_group() -> None:
        """Negotiation maintenance."""

    @negotiation_group.command("verify")
    def negotiation_verify() -> None:
        drift = negotiation_service().find_status_drift(get_db())
        if not drift:
            click.echo("All cached statuses match their response history.")
            return
        for item in drift:
            click.echo(json.dumps(item, default=str))
        raise click.ClickException(f"{len(drift)} record(s) drifted from their response history.")
