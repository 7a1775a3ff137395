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

import matplotlib
import numpy as np

matplotlib.use("Agg")


class GenHyBRTestClass(unittest.TestCase):
    '''Base class for the test cases, with numpy assertions.'''

    def assertNumpyArrayEqual(self, first, second):
        np.testing.assert_array_equal(first, second)

    def assertNumpyArrayAlmostEqual(self, first, second, decimal=6):
        np.testing.assert_array_almost_equal(first, second, decimal)


def gaussian_blur_matrix(n, sigma=2.0):
    '''Row-normalised 1-D Gaussian blur, an ill-conditioned Toeplitz matrix.'''
    t = np.arange(n)
    A = np.exp(-((t[:, None] - t[None, :]) ** 2) / (2 * sigma**2))
    return A / A.sum(axis=1, keepdims=True)


def exponential_covariance(n, length_scale=4.0):
    '''Symmetric positive definite prior covariance on a 1-D grid.'''
    t = np.arange(n)
    return np.exp(-np.abs(t[:, None] - t[None, :]) / length_scale)


def blur_problem(n=64, sigma=2.0, noise_level=0.01, seed=0):
    '''Deblurring test problem.

    Returns
    -------
    A, b, x_true, noise_std
    '''
    t = np.linspace(0, 1, n)
    x_true = np.where((t > 0.2) & (t < 0.45), 1.0, 0.0) + np.exp(-((t - 0.7) ** 2) / 0.005)
    A = gaussian_blur_matrix(n, sigma)
    b_true = A @ x_true
    rng = np.random.default_rng(seed)
    noise_std = noise_level * np.linalg.norm(b_true) / np.sqrt(n)
    b = b_true + noise_std * rng.standard_normal(n)
    return A, b, x_true, noise_std
