"""Configuration and result data structures for the implicit diffusion solve.

Structure:
- DiffusionParameters: solver settings (read once, logged to MLflow)
- SolveMetrics: outcome of one solve (logged to MLflow per step)
- SolveHistory: metrics of every solve of a run
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import List

import pandas as pd
from omegaconf import DictConfig, OmegaConf

from fv.multigrid import BottomSolver

log = logging.getLogger(__name__)


# ========================================================
# Parameters (Input Configuration)
# ========================================================


@dataclass
class DiffusionParameters:
    """Settings of the ``diffusion`` configuration namespace."""

    verbose: int = 0
    mg_verbose: int = 0
    mg_cg_verbose: int = 0
    mg_max_iter: int = 100
    mg_cg_maxiter: int = 100
    mg_max_fmg_iter: int = 0
    mg_max_coarsening_level: int = 100
    mg_rtol: float = 1e-11
    mg_atol: float = 1e-14
    bottom_solver_type: str = "bicgstab"
    bottom_solver: BottomSolver = field(init=False, repr=False)

    def __post_init__(self):
        self.bottom_solver = BottomSolver.from_string(self.bottom_solver_type)

    @classmethod
    def from_config(cls, cfg) -> "DiffusionParameters":
        """Build parameters from the ``diffusion`` section of a config.

        Missing keys keep their defaults; unknown keys are ignored.
        """
        if not isinstance(cfg, DictConfig):
            cfg = OmegaConf.create(cfg or {})
        section = OmegaConf.select(cfg, "diffusion")
        if section is None:
            return cls()

        values = OmegaConf.to_container(section, resolve=True)
        known = {f.name for f in fields(cls) if f.init}
        ignored = sorted(set(values) - known)
        if ignored:
            log.debug(f"Ignoring unknown diffusion settings: {ignored}")
        return cls(**{k: v for k, v in values.items() if k in known})

    def to_mlflow(self) -> dict:
        params = {k: v for k, v in asdict(self).items() if k != "bottom_solver"}
        params["bottom_solver"] = self.bottom_solver.value
        return params

    def to_dataframe(self):
        return pd.DataFrame([self.to_mlflow()])


# ========================================================
# Metrics (Output Results)
# ========================================================


@dataclass
class SolveMetrics:
    """Outcome of one diffusion solve."""

    step: int = 0
    dt: float = 0.0
    iterations: int = 0
    converged: bool = False
    initial_residual: float = 0.0
    final_residual: float = float("inf")
    wall_time_seconds: float = 0.0

    def to_mlflow(self) -> dict:
        return {
            "diffusion_iterations": float(self.iterations),
            "diffusion_initial_residual": self.initial_residual,
            "diffusion_final_residual": self.final_residual,
            "diffusion_wall_time": self.wall_time_seconds,
        }

    def to_dataframe(self):
        return pd.DataFrame([asdict(self)])


# ========================================================
# History (one entry per solve)
# ========================================================


@dataclass
class SolveHistory:
    """Metrics of every solve, in call order."""

    solves: List[SolveMetrics] = field(default_factory=list)

    def append(self, metrics: SolveMetrics) -> None:
        self.solves.append(metrics)

    def __len__(self) -> int:
        return len(self.solves)

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to DataFrame with one row per solve."""
        columns = [f.name for f in fields(SolveMetrics)]
        return pd.DataFrame([asdict(m) for m in self.solves], columns=columns)
