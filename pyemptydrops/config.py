"""Defaults and JSON configuration loading for EmptyDrops runs."""

import json
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import numpy as np

from .errors import InvalidInput

DEFAULT_LOWER = 100
DEFAULT_NITERS = 10000
DEFAULT_ALPHA_INTERVAL = (0.01, 10000.0)
DEFAULT_N_WORKERS = 1
DEFAULT_BACKEND = "threads"
DEFAULT_FDR_THRESHOLD = 0.001
DEFAULT_EXCLUDE_FROM = 50


@dataclass
class EmptyDropsConfig:
    """Parameters of a single EmptyDrops run, as read from a config file."""

    lower: float = DEFAULT_LOWER
    niters: int = DEFAULT_NITERS
    retain: Optional[float] = None
    by_rank: Optional[int] = None
    ignore: Optional[float] = None
    alpha: Optional[float] = None
    alpha_interval: Tuple[float, float] = DEFAULT_ALPHA_INTERVAL
    test_ambient: str = "exclude"
    round: bool = True
    seed: Optional[int] = None
    n_workers: int = DEFAULT_N_WORKERS
    backend: str = DEFAULT_BACKEND
    fdr_threshold: float = DEFAULT_FDR_THRESHOLD

    def __post_init__(self):
        if self.niters is None or int(self.niters) != self.niters or self.niters <= 0:
            raise InvalidInput(f"niters must be a positive integer, got {self.niters!r}",
                               parameter="niters", value=self.niters)
        self.niters = int(self.niters)
        if self.n_workers < 1:
            raise InvalidInput(f"n_workers must be at least 1, got {self.n_workers!r}",
                               parameter="n_workers", value=self.n_workers)
        if self.backend not in ("serial", "threads", "processes"):
            raise InvalidInput(f"unknown backend {self.backend!r}",
                               parameter="backend", value=self.backend)
        if not 0 < self.fdr_threshold <= 1:
            raise InvalidInput(f"fdr_threshold must lie in (0, 1], got {self.fdr_threshold!r}",
                               parameter="fdr_threshold", value=self.fdr_threshold)
        lo, hi = self.alpha_interval
        if not 0 < lo < hi:
            raise InvalidInput(f"alpha_interval must satisfy 0 < low < high, got {self.alpha_interval!r}",
                               parameter="alpha_interval", value=self.alpha_interval)
        self.alpha_interval = (float(lo), float(hi))
        # JSON has no infinity literal; accept the string form
        if isinstance(self.alpha, str):
            if self.alpha.lower() not in ("inf", "infinity"):
                raise InvalidInput(f"alpha must be a number or 'inf', got {self.alpha!r}",
                                   parameter="alpha", value=self.alpha)
            self.alpha = np.inf
        if isinstance(self.retain, str):
            if self.retain.lower() not in ("inf", "infinity"):
                raise InvalidInput(f"retain must be a number or 'inf', got {self.retain!r}",
                                   parameter="retain", value=self.retain)
            self.retain = np.inf

    def to_dict(self) -> dict:
        out = asdict(self)
        out["alpha_interval"] = list(self.alpha_interval)
        for key in ("alpha", "retain"):
            if out[key] is not None and np.isinf(out[key]):
                out[key] = "inf"
        return out


def load_config(path: Union[str, Path], **overrides: Any) -> EmptyDropsConfig:
    """
    Load an EmptyDrops configuration from a JSON file.

    Parameters
    ----------
    path : str or Path
        JSON file holding a single object whose keys are ``EmptyDropsConfig`` fields.
    **overrides
        Values that take precedence over the file, e.g. from the command line.
        ``None`` values are ignored.

    Returns
    -------
    EmptyDropsConfig
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise InvalidInput(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}",
            parameter="config", value=str(config_path)
        ) from exc

    if not isinstance(data, dict):
        raise InvalidInput(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}.",
            parameter="config", value=str(config_path)
        )

    data.update({k: v for k, v in overrides.items() if v is not None})
    return config_from_dict(data)


def config_from_dict(data: dict) -> EmptyDropsConfig:
    known = {f.name for f in fields(EmptyDropsConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidInput(f"Unknown config keys: {', '.join(unknown)}",
                           parameter="config", value=unknown)
    if "alpha_interval" in data:
        data = dict(data)
        data["alpha_interval"] = tuple(data["alpha_interval"])
    return EmptyDropsConfig(**data)
