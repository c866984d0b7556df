"""
Implicit diffusion demo - viscous decay of a shear flow around a cylinder.

Usage:
    uv run python main.py
    uv run python main.py mesh.n_cell=[64,64,1] time.n_steps=50
    uv run python main.py diffusion.bottom_solver_type=hypre mlflow.enabled=true
"""

import logging
import os
import sys
from pathlib import Path

import hydra
import mlflow
import numpy as np
from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()
sys.path.insert(0, str(Path(__file__).parent / "src"))

from diffusion import BCTag, DiffusionEquation, DiffusionParameters  # noqa: E402
from fv.fields import MultiField  # noqa: E402
from meshing import build_eb_factories, build_hierarchy, create_implicit_function  # noqa: E402

log = logging.getLogger(__name__)


def get_experiment_name(cfg: DictConfig) -> str:
    """Build full experiment name with optional prefix."""
    name = cfg.experiment_name
    prefix = cfg.mlflow.get("project_prefix", "")
    if prefix and not name.startswith("/"):
        return f"{prefix}/{name}"
    return name


def setup_mlflow(cfg: DictConfig) -> str:
    """Setup MLflow tracking and return experiment name."""
    tracking_uri = cfg.mlflow.get("tracking_uri", "./mlruns")
    if str(cfg.mlflow.get("mode", "")).lower() in ("files", "local"):
        os.environ.pop("MLFLOW_TRACKING_URI", None)
    os.environ["MLFLOW_TRACKING_URI"] = str(tracking_uri)
    mlflow.set_tracking_uri(tracking_uri)

    experiment_name = get_experiment_name(cfg)
    mlflow.set_experiment(experiment_name)
    return experiment_name


def boundary_tag_arrays(cfg: DictConfig, geom, nghost: int) -> dict:
    """Per-level tag arrays of the six domain faces (level 0 only)."""
    n = geom.domain.shape
    arrays = {}
    for d, (lo, hi) in enumerate((("ilo", "ihi"), ("jlo", "jhi"), ("klo", "khi"))):
        t1, t2 = [e for e in range(3) if e != d]
        shape = (n[t1] + 2 * nghost, n[t2] + 2 * nghost)
        for face in (lo, hi):
            tag = BCTag[str(cfg.bc[face]).upper()]
            arrays[face] = [np.full(shape, int(tag), dtype=np.int32)]
    return arrays


def set_wall_velocity(vel: MultiField, geom) -> None:
    """Resting walls: zero velocity in the ghost cells of non-periodic faces."""
    vel.fill_boundary(geom.periodicity())
    g = vel.ngrow
    for d in range(3):
        if geom.is_periodic[d] or g == 0:
            continue
        index = [slice(None)] * vel.data.ndim
        index[d + 1] = slice(0, g)
        vel.data[tuple(index)] = 0.0
        index[d + 1] = slice(-g, None)
        vel.data[tuple(index)] = 0.0


def kinetic_energy(vel: MultiField, ro: MultiField, factory, geom) -> float:
    dv = float(np.prod(geom.cell_size))
    vf = factory.volume_fraction(geom.domain)
    u2 = np.sum(vel.valid() ** 2, axis=0)
    return 0.5 * float(np.sum(ro.valid(0) * u2 * vf)) * dv


def run(cfg: DictConfig) -> DiffusionEquation:
    """Build the problem and advance ``time.n_steps`` diffusion steps."""
    mesh = cfg.mesh
    nghost = int(mesh.nghost)
    hierarchy = build_hierarchy(
        n_cell=mesh.n_cell,
        prob_lo=mesh.prob_lo,
        prob_hi=mesh.prob_hi,
        is_periodic=mesh.is_periodic,
        max_level=mesh.max_level,
        max_grid_size=mesh.max_grid_size,
    )

    if cfg.eb.geometry == "cylinder":
        implicit_function = create_implicit_function(
            "cylinder", radius=cfg.eb.radius, center=cfg.eb.center, direction=cfg.eb.direction
        )
    else:
        implicit_function = create_implicit_function(cfg.eb.geometry)
    factories = build_eb_factories(hierarchy, implicit_function, ngrow=nghost, n_sub=cfg.eb.n_sub)

    tags = boundary_tag_arrays(cfg, hierarchy.geom[0], nghost)
    params = DiffusionParameters.from_config(cfg)
    equation = DiffusionEquation(
        hierarchy,
        factories,
        tags["ilo"], tags["ihi"], tags["jlo"], tags["jhi"], tags["klo"], tags["khi"],
        nghost=nghost,
        cyl_speed=cfg.physics.cyl_speed,
        params=params,
    )

    vel, ro, eta = [], [], []
    for lev, geom in enumerate(hierarchy.geom):
        grids = hierarchy.grids[lev]
        v = MultiField(grids, 3, nghost, factory=factories[lev])
        X, Y, _ = geom.cell_centers(geom.domain)
        amp = cfg.physics.amplitude
        v.valid(0)[...] = amp * np.sin(np.pi * X) * np.sin(2.0 * np.pi * Y)
        v.valid(1)[...] = -amp * np.sin(2.0 * np.pi * X) * np.sin(np.pi * Y)
        v.valid(slice(0, 3))[...] *= factories[lev].volume_fraction(geom.domain) > 0.0
        set_wall_velocity(v, geom)
        vel.append(v)

        r = MultiField(grids, 1, nghost, factory=factories[lev])
        r.set_val(cfg.physics.rho, ngrow=nghost)
        ro.append(r)
        e = MultiField(grids, 1, nghost, factory=factories[lev])
        e.set_val(cfg.physics.mu, ngrow=nghost)
        eta.append(e)

    finest = hierarchy.finest_level
    for step in range(cfg.time.n_steps):
        equation.solve(vel, ro, eta, cfg.time.dt)
        for lev in range(finest + 1):
            set_wall_velocity(vel[lev], hierarchy.geom[lev])
        energy = kinetic_energy(vel[finest], ro[finest], factories[finest], hierarchy.geom[finest])
        log.info(
            f"Step {step + 1}/{cfg.time.n_steps}: {equation.metrics.iterations} MG iterations, "
            f"kinetic energy = {energy:.6e}"
        )
        if mlflow.active_run() is not None:
            mlflow.log_metric("kinetic_energy", energy, step=step)

    return equation


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Main entry point."""
    log.info(f"Mesh: n_cell={list(cfg.mesh.n_cell)}, max_level={cfg.mesh.max_level}")

    if not cfg.mlflow.get("enabled", False):
        equation = run(cfg)
        log.info(f"Done: {len(equation.history)} solves")
        return

    log.info(f"MLflow experiment: {setup_mlflow(cfg)}")
    with mlflow.start_run(run_name=f"diffusion_N{cfg.mesh.n_cell[0]}"):
        mlflow.log_params(DiffusionParameters.from_config(cfg).to_mlflow())
        mlflow.log_dict(OmegaConf.to_container(cfg), "config.yaml")
        equation = run(cfg)
        history = equation.history.to_dataframe()
        mlflow.log_table(history, "solve_history.json")
        log.info(f"Done: {len(equation.history)} solves")


if __name__ == "__main__":
    main()
