"""
Root Typer application for the fleetspine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from fleetspine.cli.db import app as db_app
from fleetspine.cli.worker import app as worker_app

app = Typer(
    name="fleetspine",
    help="fleetspine - AMR mission dispatch and scheduling engine.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("fleet-spine")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"fleetspine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """fleetspine CLI - initialise the store and run the worker."""


app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(worker_app, name="worker", help="Schedule engine and dispatcher worker.")
