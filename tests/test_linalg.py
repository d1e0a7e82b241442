"""
Tests for the small dense solvers in analytics.linalg.
"""
import numpy as np
import pytest
from scipy import linalg as sp_linalg

from analytics.linalg import invert_matrix, solve_linear_system


class TestInvertMatrix:

    def test_matches_scipy(self):
        np.random.seed(42)
        a = np.random.normal(0, 1, (5, 5)) + 5 * np.eye(5)
        np.testing.assert_allclose(invert_matrix(a), sp_linalg.inv(a), atol=1e-10)

    def test_requires_pivoting(self):
        a = [[0.0, 1.0], [1.0, 0.0]]
        np.testing.assert_allclose(invert_matrix(a), [[0.0, 1.0], [1.0, 0.0]])

    def test_singular_returns_identity(self):
        np.testing.assert_array_equal(invert_matrix([[1.0, 2.0], [2.0, 4.0]]), np.eye(2))

    def test_input_not_mutated(self):
        a = np.array([[4.0, 1.0], [1.0, 3.0]])
        before = a.copy()
        invert_matrix(a)
        np.testing.assert_array_equal(a, before)

    def test_non_square_rejected(self):
        with pytest.raises(ValueError):
            invert_matrix(np.ones((2, 3)))


class TestSolveLinearSystem:

    def test_matches_scipy(self):
        np.random.seed(42)
        a = np.random.normal(0, 1, (6, 6)) + 6 * np.eye(6)
        b = np.random.normal(0, 1, 6)
        np.testing.assert_allclose(solve_linear_system(a, b), sp_linalg.solve(a, b), atol=1e-10)

    def test_rank_deficient_uses_minimum_norm_solution(self):
        x = solve_linear_system([[1.0, 1.0], [1.0, 1.0]], [2.0, 2.0])
        np.testing.assert_allclose(x, [1.0, 1.0], atol=1e-10)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            solve_linear_system(np.eye(3), [1.0, 2.0])
