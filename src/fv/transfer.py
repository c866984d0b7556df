"""Grid transfer operators for cell-centered multigrid.

All functions act on the three leading (spatial) axes; trailing axes
(components) are carried along untouched.

- Restriction: average over each ``r0 x r1 x r2`` block of fine cells
- Prolongation: piecewise-constant injection of the coarse value
- Face restriction: every ``r_d``-th face along ``d``, averaged transversally
"""

from typing import Optional, Sequence, Tuple

import numpy as np

Ratio = Tuple[int, int, int]


def coarsen_ratio(shape: Sequence[int]) -> Optional[Ratio]:
    """Per-direction coarsening ratio, or None if the grid cannot be coarsened.

    Directions with a single cell are never coarsened; every other direction
    must be even.
    """
    if all(n == 1 for n in shape):
        return None
    if any(n > 1 and n % 2 for n in shape):
        return None
    return tuple(2 if n > 1 else 1 for n in shape)


def _block_shape(shape: Sequence[int], ratio: Ratio) -> Tuple[int, ...]:
    blocked = []
    for n, r in zip(shape[:3], ratio):
        blocked.extend((n // r, r))
    return tuple(blocked) + tuple(shape[3:])


def restrict(fine: np.ndarray, ratio: Ratio) -> np.ndarray:
    """Block average of the leading three axes."""
    return fine.reshape(_block_shape(fine.shape, ratio)).mean(axis=(1, 3, 5))


def block_sum(fine: np.ndarray, ratio: Ratio) -> np.ndarray:
    return fine.reshape(_block_shape(fine.shape, ratio)).sum(axis=(1, 3, 5))


def block_all(fine: np.ndarray, ratio: Ratio) -> np.ndarray:
    return fine.reshape(_block_shape(fine.shape, ratio)).all(axis=(1, 3, 5))


def prolong(crse: np.ndarray, ratio: Ratio) -> np.ndarray:
    """Piecewise-constant prolongation of the leading three axes."""
    fine = crse
    for axis, r in enumerate(ratio):
        if r > 1:
            fine = np.repeat(fine, r, axis=axis)
    return fine


def restrict_faces(face: np.ndarray, d: int, ratio: Ratio) -> np.ndarray:
    """Coarsen a face array normal to ``d``.

    Coarse faces coincide with every ``ratio[d]``-th fine face along ``d``;
    the fine faces covering a coarse face are averaged.
    """
    index = [slice(None)] * face.ndim
    index[d] = slice(None, None, ratio[d])
    aligned = face[tuple(index)]
    transverse = tuple(1 if e == d else r for e, r in enumerate(ratio))
    return restrict(aligned, transverse)
