"""Load a league definition from a TOML file."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any
import tomllib

from podrank.domain.calculator import PipelineOptions, RatingParameters
from podrank.domain.decay import DecayPolicy
from podrank.domain.validation import SubmissionLimits

DEFAULT_DATABASE_URL = "sqlite:///podrank.db"


@dataclass(frozen=True)
class LeagueConfig:
    """Configuration for one league."""

    name: str
    file_path: Path | None = None
    database_url: str = DEFAULT_DATABASE_URL
    parameters: RatingParameters = field(default_factory=RatingParameters)
    pipeline: PipelineOptions = field(default_factory=PipelineOptions)
    decay: DecayPolicy = field(default_factory=DecayPolicy)
    limits: SubmissionLimits = field(default_factory=SubmissionLimits)
    ledger_max_size: int = 100
    pending_timeout_seconds: float = 300.0
    audit_history_limit: int = 50
    log_level: str = "INFO"
    log_file: Path | None = None

    def as_config_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "openskill": asdict(self.parameters),
            "pipeline": asdict(self.pipeline),
            "decay": asdict(self.decay),
            "submissions": {
                **asdict(self.limits),
                "pending_timeout_seconds": self.pending_timeout_seconds,
            },
            "ledger": {"max_size": self.ledger_max_size},
            "audit": {"history_limit": self.audit_history_limit},
        }


def load_league_config(file_path: Path) -> LeagueConfig:
    """Load and validate one league TOML file."""
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")
    if not file_path.is_file():
        raise ValueError(f"Config path is not a file: {file_path}")

    with file_path.open("rb") as file:
        raw = tomllib.load(file)
    return parse_league_config(raw, file_path)


def parse_league_config(raw: dict[str, Any], file_path: Path) -> LeagueConfig:
    league_raw = raw.get("league", {})
    openskill_raw = raw.get("openskill", {})
    pipeline_raw = raw.get("pipeline", {})
    decay_raw = raw.get("decay", {})
    ledger_raw = raw.get("ledger", {})
    submissions_raw = raw.get("submissions", {})
    audit_raw = raw.get("audit", {})
    logging_raw = raw.get("logging", {})

    name = str(league_raw.get("name", "")).strip()
    if not name:
        raise ValueError(f"{file_path}: [league].name is required")

    database_url = str(league_raw.get("database_url", DEFAULT_DATABASE_URL)).strip()
    if not database_url:
        raise ValueError(f"{file_path}: [league].database_url must not be empty")

    parameters = RatingParameters(
        initial_mu=float(openskill_raw.get("initial_mu", 25.0)),
        initial_sigma=float(openskill_raw.get("initial_sigma", 8.333)),
        beta=float(openskill_raw.get("beta", 25.0 / 6.0)),
        kappa=float(openskill_raw.get("kappa", 0.0001)),
        tau=float(openskill_raw.get("tau", 25.0 / 300.0)),
        limit_sigma=_parse_bool(openskill_raw.get("limit_sigma", False), file_path=file_path, key="openskill.limit_sigma"),
        balance=_parse_bool(openskill_raw.get("balance", False), file_path=file_path, key="openskill.balance"),
    )
    _validate_parameters(file_path=file_path, parameters=parameters)

    pipeline = PipelineOptions(
        dampen_small_groups=_parse_bool(
            pipeline_raw.get("dampen_small_groups", True), file_path=file_path, key="pipeline.dampen_small_groups"
        ),
        small_group_size=int(pipeline_raw.get("small_group_size", 3)),
        dampening_factor=float(pipeline_raw.get("dampening_factor", 0.9)),
        minimum_change=_parse_bool(
            pipeline_raw.get("minimum_change", True), file_path=file_path, key="pipeline.minimum_change"
        ),
        minimum_elo_change=int(pipeline_raw.get("minimum_elo_change", 2)),
        participation_bonus=_parse_bool(
            pipeline_raw.get("participation_bonus", True), file_path=file_path, key="pipeline.participation_bonus"
        ),
        bonus_elo=int(pipeline_raw.get("bonus_elo", 1)),
        phantom_padding=_parse_bool(
            pipeline_raw.get("phantom_padding", True), file_path=file_path, key="pipeline.phantom_padding"
        ),
        nominal_group_size=int(pipeline_raw.get("nominal_group_size", 4)),
    )
    _validate_pipeline(file_path=file_path, pipeline=pipeline)

    decay = DecayPolicy(
        enabled=_parse_bool(decay_raw.get("enabled", True), file_path=file_path, key="decay.enabled"),
        grace_days=int(decay_raw.get("grace_days", 6)),
        elo_cutoff=int(decay_raw.get("elo_cutoff", 1050)),
        elo_per_day=int(decay_raw.get("elo_per_day", 1)),
        sigma_per_day=float(decay_raw.get("sigma_per_day", 0.01)),
        max_sigma_increase=float(decay_raw.get("max_sigma_increase", 2.0)),
        sigma_cap=float(decay_raw.get("sigma_cap", 10.0)),
    )
    _validate_decay(file_path=file_path, decay=decay)

    limits = SubmissionLimits(
        min_players=int(submissions_raw.get("min_players", 2)),
        max_players=int(submissions_raw.get("max_players", 4)),
        min_decks=int(submissions_raw.get("min_decks", 3)),
        max_decks=int(submissions_raw.get("max_decks", 4)),
        cedh_mode=_parse_bool(league_raw.get("cedh_mode", False), file_path=file_path, key="league.cedh_mode"),
    )
    if not 2 <= limits.min_players <= limits.max_players:
        raise ValueError(f"{file_path}: [submissions] requires 2 <= min_players <= max_players")
    if not 2 <= limits.min_decks <= limits.max_decks:
        raise ValueError(f"{file_path}: [submissions] requires 2 <= min_decks <= max_decks")

    pending_timeout_seconds = float(submissions_raw.get("pending_timeout_seconds", 300.0))
    if pending_timeout_seconds <= 0.0:
        raise ValueError(f"{file_path}: [submissions].pending_timeout_seconds must be > 0")

    ledger_max_size = int(ledger_raw.get("max_size", 100))
    if ledger_max_size <= 0:
        raise ValueError(f"{file_path}: [ledger].max_size must be > 0")

    audit_history_limit = int(audit_raw.get("history_limit", 50))
    if audit_history_limit <= 0:
        raise ValueError(f"{file_path}: [audit].history_limit must be > 0")

    log_file_value = logging_raw.get("file")
    return LeagueConfig(
        name=name,
        file_path=file_path,
        database_url=database_url,
        parameters=parameters,
        pipeline=pipeline,
        decay=decay,
        limits=limits,
        ledger_max_size=ledger_max_size,
        pending_timeout_seconds=pending_timeout_seconds,
        audit_history_limit=audit_history_limit,
        log_level=str(logging_raw.get("level", "INFO")).upper(),
        log_file=None if log_file_value is None else Path(str(log_file_value)),
    )


def _parse_bool(value: Any, *, file_path: Path, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("true", "1", "yes", "on"):
            return True
        if normalized in ("false", "0", "no", "off"):
            return False
    section, _, name = key.partition(".")
    raise ValueError(f"{file_path}: [{section}].{name} must be a boolean")


def _validate_parameters(*, file_path: Path, parameters: RatingParameters) -> None:
    if parameters.initial_mu <= 0.0:
        raise ValueError(f"{file_path}: [openskill].initial_mu must be > 0")
    if parameters.initial_sigma <= 0.0:
        raise ValueError(f"{file_path}: [openskill].initial_sigma must be > 0")
    if parameters.beta <= 0.0:
        raise ValueError(f"{file_path}: [openskill].beta must be > 0")
    if parameters.kappa <= 0.0:
        raise ValueError(f"{file_path}: [openskill].kappa must be > 0")
    if parameters.tau <= 0.0:
        raise ValueError(f"{file_path}: [openskill].tau must be > 0")


def _validate_pipeline(*, file_path: Path, pipeline: PipelineOptions) -> None:
    if not 0.0 < pipeline.dampening_factor <= 1.0:
        raise ValueError(f"{file_path}: [pipeline].dampening_factor must be in (0, 1]")
    if pipeline.small_group_size < 2:
        raise ValueError(f"{file_path}: [pipeline].small_group_size must be >= 2")
    if pipeline.minimum_elo_change < 0:
        raise ValueError(f"{file_path}: [pipeline].minimum_elo_change must be >= 0")
    if pipeline.bonus_elo < 0:
        raise ValueError(f"{file_path}: [pipeline].bonus_elo must be >= 0")
    if pipeline.nominal_group_size < 2:
        raise ValueError(f"{file_path}: [pipeline].nominal_group_size must be >= 2")


def _validate_decay(*, file_path: Path, decay: DecayPolicy) -> None:
    if decay.grace_days < 0:
        raise ValueError(f"{file_path}: [decay].grace_days must be >= 0")
    if decay.elo_per_day <= 0:
        raise ValueError(f"{file_path}: [decay].elo_per_day must be > 0")
    if decay.sigma_per_day < 0.0:
        raise ValueError(f"{file_path}: [decay].sigma_per_day must be >= 0")
    if decay.max_sigma_increase < 0.0:
        raise ValueError(f"{file_path}: [decay].max_sigma_increase must be >= 0")
    if decay.sigma_cap <= 0.0:
        raise ValueError(f"{file_path}: [decay].sigma_cap must be > 0")


__all__ = ["DEFAULT_DATABASE_URL", "LeagueConfig", "load_league_config", "parse_league_config"]
