#!/usr/bin/env python3
"""Maintenance commands for a league database: schema, replays, decay and lookups."""

from __future__ import annotations

import dataclasses
import sys
from pathlib import Path
from typing import Annotated

import typer

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from podrank.config import LeagueConfig, load_league_config
from podrank.domain.common import TargetType
from podrank.domain.errors import ValidationError
from podrank.log import setup_logging
from podrank.services.league import LeagueService

DEFAULT_CONFIG_PATH = ROOT_DIR / "configs" / "league.toml"

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="League rating maintenance commands.",
)

ConfigOption = Annotated[
    Path,
    typer.Option("--config", help="League TOML config file."),
]
DbUrlOption = Annotated[
    str | None,
    typer.Option(
        "--db-url",
        help="Database URL. Defaults to [league].database_url from the config file.",
    ),
]


def _load(config_path: Path, db_url: str | None) -> LeagueConfig:
    try:
        config = load_league_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc
    if db_url is not None:
        config = dataclasses.replace(config, database_url=db_url)
    setup_logging(config.log_level, config.log_file)
    return config


@app.command()
def init_db(config_path: ConfigOption = DEFAULT_CONFIG_PATH, db_url: DbUrlOption = None) -> None:
    """Create league tables when missing."""
    config = _load(config_path, db_url)
    LeagueService.from_config(config)
    typer.echo(f"schema ready league={config.name}")


@app.command()
def recalculate(
    target_type: Annotated[
        TargetType | None,
        typer.Option("--type", help="Only replay this entity type (player, deck). Defaults to both."),
    ] = None,
    config_path: ConfigOption = DEFAULT_CONFIG_PATH,
    db_url: DbUrlOption = None,
) -> None:
    """Rebuild ratings by replaying every confirmed, active game."""
    config = _load(config_path, db_url)
    service = LeagueService.from_config(config)
    summaries = service.recalculate(None if target_type is None else [target_type])
    for summary in summaries:
        typer.echo(
            f"replayed type={summary.target_type.value} "
            f"games={summary.games_replayed} "
            f"participations={summary.participations} "
            f"entities={summary.entities_written} "
            f"removed={len(summary.removed_entities)}"
        )
        for warning in summary.warnings:
            typer.echo(f"warning: {warning}", err=True)


@app.command()
def decay(
    triggered_by: Annotated[
        str,
        typer.Option("--triggered-by", help="Actor recorded on the audit entries."),
    ] = "scheduler",
    config_path: ConfigOption = DEFAULT_CONFIG_PATH,
    db_url: DbUrlOption = None,
) -> None:
    """Apply inactivity decay to every eligible player."""
    config = _load(config_path, db_url)
    service = LeagueService.from_config(config)
    summary = service.apply_decay(triggered_by=triggered_by)
    if not summary.entries:
        typer.echo("no players decayed")
        return
    for entry in summary.entries:
        typer.echo(f"decayed player={entry.after.entity_id} elo={entry.before.elo}->{entry.after.elo}")


@app.command()
def renormalize(config_path: ConfigOption = DEFAULT_CONFIG_PATH, db_url: DbUrlOption = None) -> None:
    """Rewrite every game's sequence key to evenly spaced integers."""
    config = _load(config_path, db_url)
    service = LeagueService.from_config(config)
    count = service.renormalize_sequences()
    typer.echo(f"renormalized games={count}")


@app.command()
def show_entity(
    target_type: Annotated[TargetType, typer.Argument(help="Entity type (player, deck).")],
    entity_id: Annotated[str, typer.Argument(help="Player id or deck name.")],
    config_path: ConfigOption = DEFAULT_CONFIG_PATH,
    db_url: DbUrlOption = None,
) -> None:
    """Print the current rating of one player or deck."""
    config = _load(config_path, db_url)
    service = LeagueService.from_config(config)
    view = service.get_entity(target_type, entity_id)
    if view is None:
        typer.echo(f"{target_type.value} {entity_id} not found", err=True)
        raise typer.Exit(code=1)
    typer.echo(
        f"{view.display_name} elo={view.elo} mu={view.mu:.3f} sigma={view.sigma:.3f} "
        f"record={view.wins}/{view.losses}/{view.draws}"
    )


@app.command()
def predict(
    target_type: Annotated[TargetType, typer.Argument(help="Entity type (player, deck).")],
    entity_ids: Annotated[list[str], typer.Argument(help="Two or more player ids or deck names.")],
    config_path: ConfigOption = DEFAULT_CONFIG_PATH,
    db_url: DbUrlOption = None,
) -> None:
    """Print win chances from current ratings, most likely winner first."""
    config = _load(config_path, db_url)
    service = LeagueService.from_config(config)
    try:
        predictions = service.predict(target_type, entity_ids)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc), param_hint="ENTITY_IDS") from exc
    for prediction in sorted(predictions, key=lambda item: item.probability, reverse=True):
        unrated = "" if prediction.rated else " (unrated)"
        typer.echo(f"{prediction.entity_id}{unrated} elo={prediction.elo} win={prediction.probability:.1%}")


@app.command()
def history(
    target_type: Annotated[TargetType, typer.Argument(help="Entity type (player, deck).")],
    entity_id: Annotated[str, typer.Argument(help="Player id or deck name.")],
    limit: Annotated[int, typer.Option("--limit", help="Number of entries to print.")] = 50,
    config_path: ConfigOption = DEFAULT_CONFIG_PATH,
    db_url: DbUrlOption = None,
) -> None:
    """Print audit entries for one player or deck, newest first."""
    if limit <= 0:
        raise typer.BadParameter("--limit must be greater than 0")
    config = _load(config_path, db_url)
    service = LeagueService.from_config(config)
    for change in service.get_audit_history(target_type, entity_id, limit):
        typer.echo(
            f"{change.created_at:%Y-%m-%d %H:%M:%S} {change.change_type} "
            f"elo={change.old_elo}->{change.new_elo} actor={change.actor or '-'} "
            f"reason={change.reason or '-'}"
        )


if __name__ == "__main__":
    app()
