"""
CLI: ``fleetspine worker`` - run the schedule engine and the dispatcher.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import typer

from fleetspine.chaining import (
    MapQueueConfigRepository,
    NodeCoordinateRepository,
    OpportunisticJobEvaluator,
    OpportunityRepository,
)
from fleetspine.cli.utils import console, err_console, get_connection
from fleetspine.core.logging import configure_logging, get_logger
from fleetspine.core.protocols import Connection
from fleetspine.core.settings import FleetSettings
from fleetspine.dispatch import Dispatcher, SimulatedAmrGateway
from fleetspine.queue import MissionQueueService, MissionRepository
from fleetspine.scheduling import LockManager, ScheduleRepository, SchedulerService

app = typer.Typer(no_args_is_help=True)

logger = get_logger(__name__)


@dataclass
class Engine:
    """Everything one worker process runs."""

    conn: Connection
    queue: MissionQueueService
    scheduler: SchedulerService
    dispatcher: Dispatcher

    def start(self) -> None:
        self.scheduler.start()
        self.dispatcher.start()

    def stop(self) -> None:
        self.dispatcher.stop()
        self.scheduler.stop()

    def run_once(self) -> None:
        self.scheduler.run_due()
        asyncio.run(self.dispatcher.run_cycle())


def build_engine(conn: Connection, settings: FleetSettings) -> Engine:
    """Wire the queue, schedule engine, evaluator and dispatcher on one store."""
    missions = MissionRepository(conn)
    queue = MissionQueueService(missions, settings=settings)
    scheduler = SchedulerService(ScheduleRepository(conn), LockManager(conn), queue, settings=settings)
    evaluator = OpportunisticJobEvaluator(
        missions,
        OpportunityRepository(conn),
        MapQueueConfigRepository(conn, settings=settings),
        NodeCoordinateRepository(conn),
        settings=settings,
    )
    gateway = SimulatedAmrGateway(conn, settings=settings)
    dispatcher = Dispatcher(queue, gateway, evaluator=evaluator, settings=settings)
    return Engine(conn=conn, queue=queue, scheduler=scheduler, dispatcher=dispatcher)


@app.command("start")
def start(
    db: str | None = typer.Option(None, "--db", "-d", help="SQLite database path"),
    simulate: bool = typer.Option(True, "--simulate/--no-simulate", help="Use the simulated AMR gateway"),
    once: bool = typer.Option(False, "--once", help="Run a single scheduler and dispatcher cycle, then exit"),
) -> None:
    """Start the schedule engine and the dispatcher.

    Both loops run on daemon threads until interrupted.

    Example::

        fleetspine worker start --db /data/fleet.db
        fleetspine worker start --once
    """
    if not simulate:
        err_console.print("[red]No AMR gateway transport is configured; run with --simulate[/red]")
        raise typer.Exit(code=1)

    settings = FleetSettings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")
    engine = build_engine(get_connection(db, settings), settings)

    if once:
        engine.run_once()
        stats = engine.dispatcher.get_stats()
        console.print(
            f"[bold green]Cycle complete[/bold green] "
            f"(submitted={stats.missions_submitted}, completed={stats.missions_completed}, "
            f"failed={stats.missions_failed})"
        )
        engine.conn.close()
        return

    console.print(
        f"[bold green]Starting fleet worker[/bold green] "
        f"(dispatch={settings.dispatcher_interval_seconds}s, "
        f"schedules={settings.scheduler_interval_seconds}s, robots={', '.join(settings.fleet_robot_ids)})"
    )
    engine.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped by user[/yellow]")
    finally:
        engine.stop()
        engine.conn.close()
        logger.info("worker_exited")
