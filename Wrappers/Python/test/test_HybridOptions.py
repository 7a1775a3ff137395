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

from genhybr.framework.exceptions import ConfigurationError, UnsupportedSolverError
from genhybr.optimisation.utilities.HybridOptions import HybridOptions
from genhybr.optimisation.utilities.noise import estimate_noise_level


class TestHybridOptions(unittest.TestCase):
    def test_defaults(self):
        options = HybridOptions.defaults()
        self.assertEqual(options.inner_solver, "tikhonov")
        self.assertEqual(options.regpar, "wgcv")
        self.assertEqual(options.noise_level, "est")
        self.assertEqual(options.omega, "adapt")
        self.assertIsNone(options.max_iteration)
        self.assertFalse(options.reorth)
        self.assertFalse(options.has_truth)
        self.assertEqual(options.reg_start, 2)
        self.assertEqual(options.flat_tol, 1e-6)
        self.assertEqual(options.min_tol, 10)
        self.assertEqual(options.res_tol, (1e-6, 1e-6))
        self.assertEqual(options.nbeta, 0)
        self.assertFalse(options.store_basis)
        self.assertTrue(options.adaptive_omega)

    def test_copy(self):
        options = HybridOptions.defaults()
        new = options.copy(inner_solver="TSVD", regpar=3, res_tol=1e-4)
        self.assertEqual(new.inner_solver, "tsvd")
        self.assertEqual(new.regpar, 3.0)
        self.assertEqual(new.res_tol, (1e-4, 1e-4))
        self.assertFalse(new.adaptive_omega)
        # source options unchanged
        self.assertEqual(options.inner_solver, "tikhonov")
        with self.assertRaisesRegex(ConfigurationError, "Unknown option"):
            options.copy(tolerance=1.0)
        with self.assertRaises(ConfigurationError):
            options.copy(has_truth=True)

    def test_resolve(self):
        self.assertEqual(HybridOptions().resolve(50, 200).max_iteration, 50)
        self.assertEqual(HybridOptions().resolve(500, 300).max_iteration, 100)
        self.assertEqual(HybridOptions(max_iteration=7).resolve(500, 300).max_iteration, 7)

    def test_unsupported_solver(self):
        with self.assertRaises(UnsupportedSolverError):
            HybridOptions(inner_solver="lsqr")
        with self.assertRaises(UnsupportedSolverError):
            HybridOptions().copy(inner_solver=None)

    def test_invalid_values(self):
        invalid = [
            {"regpar": "upre"},
            {"regpar": -1.0},
            {"noise_level": "estimate"},
            {"noise_level": -0.1},
            {"omega": "auto"},
            {"max_iteration": 0},
            {"max_iteration": 2.5},
            {"reg_start": "2"},
            {"min_tol": True},
            {"flat_tol": np.nan},
            {"res_tol": (1e-6, 1e-6, 1e-6)},
            {"nbeta": -1},
        ]
        for kwargs in invalid:
            with self.subTest(**{k: repr(v) for k, v in kwargs.items()}):
                with self.assertRaises(ConfigurationError):
                    HybridOptions(**kwargs)

    def test_x_true_converted(self):
        options = HybridOptions(x_true=[1.0, 2.0])
        self.assertTrue(options.has_truth)
        self.assertIsInstance(options.x_true, np.ndarray)
        self.assertIn("x_true=set", repr(options))


class TestNoiseEstimation(unittest.TestCase):
    def setUp(self):
        self.rng = np.random.default_rng(11)
        self.sigma = 0.1

    def test_one_dimensional(self):
        t = np.linspace(0, 1, 4096)
        data = np.sin(2 * np.pi * t) + self.sigma * self.rng.standard_normal(t.size)
        estimate = estimate_noise_level(data)
        self.assertAlmostEqual(estimate / self.sigma, 1.0, delta=0.1)

    def test_two_dimensional(self):
        data = np.ones((128, 128)) + self.sigma * self.rng.standard_normal((128, 128))
        estimate = estimate_noise_level(data)
        self.assertAlmostEqual(estimate / self.sigma, 1.0, delta=0.1)

    def test_column_vector(self):
        data = self.sigma * self.rng.standard_normal((2048, 1))
        self.assertAlmostEqual(estimate_noise_level(data) / self.sigma, 1.0, delta=0.1)

    def test_noise_free(self):
        self.assertEqual(estimate_noise_level(np.ones(64)), 0.0)

    def test_unsupported_dimensions(self):
        with self.assertRaises(ValueError):
            estimate_noise_level(np.zeros((4, 4, 4)))


if __name__ == "__main__":
    unittest.main()
