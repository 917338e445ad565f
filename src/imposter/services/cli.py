"""Typer CLI entry point for serving games and dealing local pass-and-play rounds."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table

from ..config.settings import DEFAULT_CONFIG_PATH, load_server_config
from ..core.catalog import Catalog, DEFAULT_CATALOG_PATH
from ..core.errors import GameError
from ..core.fsm import RoundEngine
from ..core.schemas import ImposterMode, SessionSettings
from ..core.session import Seat, Session
from ..utils.rng import build_rng

LOGGER = structlog.get_logger(__name__)

app = typer.Typer(help="Run the imposter party game server.", invoke_without_command=False)
console = Console()
_configured_logging = False


def configure_logging(level: str = "INFO") -> None:
    global _configured_logging
    if _configured_logging:
        return
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        cache_logger_on_first_use=True,
    )
    _configured_logging = True


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind"),
    port: Optional[int] = typer.Option(None, help="Port to listen on"),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, help="Path to server configuration JSON"),
) -> None:
    """Start the WebSocket game server."""

    import uvicorn

    from .web_api import create_app

    server_config = load_server_config(config)
    if host is not None:
        server_config.host = host
    if port is not None:
        server_config.port = port
    configure_logging(server_config.log_level)

    LOGGER.info("server.start", host=server_config.host, port=server_config.port, client_url=server_config.client_url)
    uvicorn.run(create_app(server_config), host=server_config.host, port=server_config.port)


@app.command("cards")
def cards(catalog: Path = typer.Option(DEFAULT_CATALOG_PATH, help="Path to the cards CSV")) -> None:
    """List every card name in the catalog."""

    configure_logging("WARNING")
    source = Catalog(catalog)
    names = source.names()
    if not names:
        typer.echo(f"Error: could not load catalog: {source.load_error or 'empty'}")
        raise typer.Exit(code=1)

    table = Table(title=f"{len(names)} cards")
    table.add_column("Name")
    for item_name in names:
        table.add_row(item_name)
    console.print(table)


@app.command("deal")
def deal(
    players: int = typer.Option(..., "--players", "-n", help="Number of players at the table"),
    imposters: int = typer.Option(1, help="Number of imposters"),
    mode: ImposterMode = typer.Option(ImposterMode.GENERIC, help="generic or decoy"),
    floor: int = typer.Option(3, help="Similarity floor for decoy mode (1-4)"),
    rounds: int = typer.Option(2, help="Number of discussion rounds"),
    seed: Optional[int] = typer.Option(None, help="Seed for a reproducible deal"),
    catalog: Path = typer.Option(DEFAULT_CATALOG_PATH, help="Path to the cards CSV"),
) -> None:
    """Deal a pass-and-play game locally and print who sees what."""

    configure_logging("WARNING")
    try:
        settings = SessionSettings(
            imposter_count=imposters,
            imposter_mode=mode,
            similarity_floor=floor,
            round_count=rounds,
        )
    except ValueError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    session = Session(
        code="LOCAL",
        seats=[Seat(identity=f"local-{index}", name=f"Player {index + 1}", is_host=index == 0) for index in range(players)],
        settings=settings,
    )
    engine = RoundEngine(Catalog(catalog), rng=build_rng(seed=seed))
    try:
        engine.start(session)
    except GameError as exc:
        typer.echo(f"Error: {exc.message}")
        raise typer.Exit(code=1) from exc

    table = Table(title="Cards in reveal order")
    table.add_column("Seat")
    table.add_column("Card")
    table.add_column("Role")
    imposter_set = set(session.imposter_seats)
    for seat_index in session.reveal_order:
        card = session.seat_cards[seat_index]
        table.add_row(
            session.seats[seat_index].name,
            card.name,
            "imposter" if seat_index in imposter_set else "",
        )
    console.print(table)

    for round_index, order in enumerate(session.discussion_orders):
        names = ", ".join(session.seats[seat_index].name for seat_index in order)
        console.print(f"Round {round_index + 1} turn order: {names}")

    real = session.real_item.name if session.real_item else "-"
    decoy = session.decoy_item.name if session.decoy_item else "-"
    console.print(f"Real card: [bold]{real}[/bold]  Decoy: [bold]{decoy}[/bold]")


if __name__ == "__main__":  # pragma: no cover
    app()
