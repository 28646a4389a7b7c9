"""Dooly CLI: Typer application root.

Entry point for the ``dooly`` console script.
"""
from __future__ import annotations

import json

import typer

from dooly.config import settings

cli = typer.Typer(
    name="dooly",
    help="Dooly: shared playback clock and collaborative sequencer sync.",
    no_args_is_help=True,
)


@cli.command("serve", help="Run the sync server.")
def serve(
    host: str = typer.Option(settings.host, "--host", help="Interface to bind."),
    port: int = typer.Option(settings.port, "--port", "-p", help="Port to listen on."),
    reload: bool = typer.Option(False, "--reload", help="Reload on source changes (development)."),
) -> None:
    import uvicorn

    uvicorn.run("dooly.main:app", host=host, port=port, reload=reload)


@cli.command("protocol", help="Print the wire protocol version and hash.")
def protocol(
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of text."),
) -> None:
    from dooly.protocol.hash import compute_protocol_hash
    from dooly.protocol.version import DOOLY_PROTOCOL_VERSION

    protocol_hash = compute_protocol_hash()
    if as_json:
        typer.echo(json.dumps({"protocolVersion": DOOLY_PROTOCOL_VERSION, "protocolHash": protocol_hash}))
        return
    typer.echo(f"protocol {DOOLY_PROTOCOL_VERSION}")
    typer.echo(f"hash     {protocol_hash}")


if __name__ == "__main__":
    cli()
