"""Dense matrix algebra used by the sensitivity propagators.

Thin wrappers around numpy that validate shapes up front, so that an index
misalignment between Jacobian blocks fails loudly instead of broadcasting.
"""

import numpy as np

from .errors import SingularCalibrationJacobianError


def as_matrix(data, shape=None):
    """Return ``data`` as a 2-D float array, optionally checking its shape."""
    m = np.array(data, dtype=float)
    if m.ndim != 2:
        raise ValueError(f"Expected a matrix, got an array with {m.ndim} dimension(s).")
    if shape is not None and m.shape != tuple(shape):
        raise ValueError(f"Expected a matrix of shape {tuple(shape)}, got {m.shape}.")
    return m


def as_vector(data, size=None):
    """Return ``data`` as a 1-D float array, optionally checking its length."""
    v = np.array(data, dtype=float)
    if v.ndim != 1:
        raise ValueError(f"Expected a vector, got an array with {v.ndim} dimension(s).")
    if size is not None and v.shape[0] != size:
        raise ValueError(f"Expected a vector of size {size}, got {v.shape[0]}.")
    return v


def multiply(a, b):
    """Matrix-matrix or matrix-vector product with an explicit shape check."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.ndim != 2:
        raise ValueError("Left operand must be a matrix.")
    if a.shape[1] != b.shape[0]:
        raise ValueError(f"Shapes {a.shape} and {b.shape} are not aligned.")
    return a @ b


def transpose(a):
    return as_matrix(a).T.copy()


def scale(a, factor):
    return np.asarray(a, dtype=float) * float(factor)


def inverse(a, condition_limit=1.0e14):
    """Inverse of a square matrix.

    Raises
    ------
    SingularCalibrationJacobianError
        If the matrix is not invertible or its condition number exceeds
        ``condition_limit``.
    """
    m = as_matrix(a)
    if m.shape[0] != m.shape[1]:
        raise ValueError(f"Only square matrices can be inverted, got {m.shape}.")
    if m.size == 0:
        raise SingularCalibrationJacobianError("Cannot invert an empty matrix.")
    cond = np.linalg.cond(m)
    if not np.isfinite(cond) or cond > condition_limit:
        raise SingularCalibrationJacobianError(
            f"Matrix of shape {m.shape} is singular (condition number {cond:.3e})."
        )
    try:
        return np.linalg.inv(m)
    except np.linalg.LinAlgError as exc:
        raise SingularCalibrationJacobianError(str(exc)) from exc
