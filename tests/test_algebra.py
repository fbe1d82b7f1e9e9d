import numpy as np
import pytest

from calibrated_pricer import algebra
from calibrated_pricer.errors import SingularCalibrationJacobianError


def test_multiply_checks_shapes():
    a = np.ones((2, 3))
    with pytest.raises(ValueError):
        algebra.multiply(a, np.ones((2, 2)))
    np.testing.assert_allclose(algebra.multiply(a, np.ones(3)), [3.0, 3.0])


def test_as_matrix_and_vector_shape_checks():
    with pytest.raises(ValueError):
        algebra.as_matrix([1.0, 2.0])
    with pytest.raises(ValueError):
        algebra.as_matrix(np.zeros((2, 2)), (3, 2))
    with pytest.raises(ValueError):
        algebra.as_vector(np.zeros(3), 4)


def test_inverse_of_well_conditioned_matrix():
    m = np.array([[4.0, 1.0], [1.0, 3.0]])
    inv = algebra.inverse(m)
    np.testing.assert_allclose(m @ inv, np.eye(2), atol=1e-14)


def test_inverse_of_singular_matrix_raises():
    with pytest.raises(SingularCalibrationJacobianError):
        algebra.inverse(np.array([[1.0, 2.0], [2.0, 4.0]]))
    with pytest.raises(SingularCalibrationJacobianError):
        algebra.inverse(np.diag([1.0, 1e-20]), condition_limit=1e14)
