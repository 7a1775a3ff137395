#  Copyright 2019 United Kingdom Research and Innovation
#  Copyright 2019 The University of Manchester
#
#  Licensed under the Apache License, Version 2.0 (the "License");
#  you may not use this file except in compliance with the License.
#  You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
#  Unless required by applicable law or agreed to in writing, software
#  distributed under the License is distributed on an "AS IS" BASIS,
#  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#  See the License for the specific language governing permissions and
#  limitations under the License.
#
# Authors:
# CIL Developers, listed at: https://github.com/TomographicImaging/CIL/blob/master/NOTICE.txt


import unittest
import numpy as np
import scipy.sparse
import scipy.sparse.linalg

from genhybr.optimisation.operators import (
    DiagonalOperator,
    FunctionOperator,
    IdentityOperator,
    LinearOperator,
    MatrixOperator,
    aslinearoperator,
)
from genhybr.optimisation.utilities.norms import normM
from testclass import GenHyBRTestClass, exponential_covariance


class TestMatrixOperator(GenHyBRTestClass):
    def setUp(self):
        rng = np.random.default_rng(1)
        self.M = rng.standard_normal((6, 4))
        self.x = rng.standard_normal(4)
        self.y = rng.standard_normal(6)

    def test_direct_adjoint(self):
        op = MatrixOperator(self.M)
        self.assertEqual(op.shape, (6, 4))
        self.assertNumpyArrayAlmostEqual(op.direct(self.x), self.M @ self.x)
        self.assertNumpyArrayAlmostEqual(op.adjoint(self.y), self.M.T @ self.y)

    def test_adjoint_dot_test(self):
        op = MatrixOperator(self.M)
        self.assertAlmostEqual(np.dot(op.direct(self.x), self.y),
                               np.dot(self.x, op.adjoint(self.y)), places=12)

    def test_out_argument(self):
        op = MatrixOperator(self.M)
        out = np.zeros(6)
        res = op.direct(self.x, out=out)
        self.assertIs(res, out)
        self.assertNumpyArrayAlmostEqual(out, self.M @ self.x)

    def test_sparse(self):
        S = scipy.sparse.random(6, 4, density=0.5, random_state=3)
        op = MatrixOperator(S)
        self.assertNumpyArrayAlmostEqual(op.direct(self.x), S @ self.x)
        self.assertNumpyArrayAlmostEqual(op.adjoint(self.y), S.T @ self.y)

    def test_inverse_dense_and_sparse(self):
        C = exponential_covariance(5)
        z = np.arange(1.0, 6.0)
        for matrix in (C, scipy.sparse.csr_matrix(C)):
            with self.subTest(sparse=scipy.sparse.issparse(matrix)):
                op = MatrixOperator(matrix)
                self.assertNumpyArrayAlmostEqual(C @ op.inverse(z), z, decimal=10)
                # factorisation is cached
                solve = op._solve
                op.inverse(z)
                self.assertIs(op._solve, solve)

    def test_inverse_non_square(self):
        with self.assertRaises(ValueError):
            MatrixOperator(self.M).inverse(self.y)

    def test_shapes(self):
        op = MatrixOperator(np.eye(6), domain_shape=(2, 3), range_shape=(3, 2))
        self.assertEqual(op.domain_shape, (2, 3))
        self.assertEqual(op.range_shape, (3, 2))
        self.assertEqual(op.direct(np.ones((2, 3))).shape, (6,))
        with self.assertRaises(ValueError):
            MatrixOperator(np.eye(6), domain_shape=(2, 2))


class TestOtherOperators(GenHyBRTestClass):
    def test_function_operator(self):
        M = np.arange(6.0).reshape(3, 2)
        op = FunctionOperator(lambda x: M @ x, lambda y: M.T @ y, domain_shape=(2,), range_shape=(3,))
        self.assertEqual(op.shape, (3, 2))
        self.assertNumpyArrayAlmostEqual(op.direct([1.0, 2.0]), M @ [1.0, 2.0])
        with self.assertRaises(NotImplementedError):
            op.inverse(np.ones(3))

    def test_function_operator_returns_copy(self):
        op = FunctionOperator(lambda x: x, lambda x: x, domain_shape=(3,), inverse=lambda x: x)
        x = np.ones(3)
        y = op.inverse(x)
        y[0] = 5.0
        self.assertEqual(x[0], 1.0)

    def test_identity(self):
        op = IdentityOperator((2, 2))
        self.assertEqual(op.shape, (4, 4))
        x = np.arange(4.0)
        self.assertNumpyArrayEqual(op.direct(x), x)
        self.assertNumpyArrayEqual(op.inverse(x), x)

    def test_diagonal(self):
        d = np.array([1.0, 2.0, 4.0])
        op = DiagonalOperator(d)
        x = np.ones(3)
        self.assertNumpyArrayAlmostEqual(op.direct(x), d)
        self.assertNumpyArrayAlmostEqual(op.inverse(x), 1 / d)
        with self.assertRaises(ZeroDivisionError):
            DiagonalOperator([1.0, 0.0]).inverse(np.ones(2))

    def test_aslinearoperator(self):
        M = np.eye(3)
        op = MatrixOperator(M)
        self.assertIs(aslinearoperator(op), op)
        self.assertIsInstance(aslinearoperator(M), MatrixOperator)
        self.assertIsInstance(aslinearoperator(scipy.sparse.eye(3)), MatrixOperator)
        wrapped = aslinearoperator(scipy.sparse.linalg.aslinearoperator(2 * M))
        self.assertIsInstance(wrapped, LinearOperator)
        self.assertNumpyArrayAlmostEqual(wrapped.adjoint(np.ones(3)), 2 * np.ones(3))
        with self.assertRaises(TypeError):
            aslinearoperator([[1, 0], [0, 1]])


class TestNormM(unittest.TestCase):
    def setUp(self):
        self.C = exponential_covariance(5)
        self.v = np.array([1.0, -2.0, 0.5, 3.0, -1.0])
        self.expected = np.sqrt(self.v @ self.C @ self.v)

    def test_weightings(self):
        cases = {
            "array": self.C,
            "sparse": scipy.sparse.csr_matrix(self.C),
            "operator": MatrixOperator(self.C),
            "callable": lambda v: self.C @ v,
        }
        for name, M in cases.items():
            with self.subTest(weighting=name):
                self.assertAlmostEqual(normM(self.v, M), self.expected, places=12)

    def test_inverse_weighting(self):
        R = MatrixOperator(self.C)
        expected = np.sqrt(self.v @ np.linalg.solve(self.C, self.v))
        self.assertAlmostEqual(normM(self.v, R.inverse), expected, places=10)

    def test_identity_is_euclidean(self):
        self.assertAlmostEqual(normM(self.v, np.eye(5)), np.linalg.norm(self.v), places=12)
        self.assertIsInstance(normM(self.v, np.eye(5)), float)

    def test_no_side_effects(self):
        v = self.v.copy()
        normM(v, self.C)
        np.testing.assert_array_equal(v, self.v)


if __name__ == "__main__":
    unittest.main()
