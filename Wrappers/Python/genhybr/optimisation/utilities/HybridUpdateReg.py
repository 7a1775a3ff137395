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

from abc import ABC, abstractmethod
import logging
from typing import Callable, Optional, Tuple, Union

import numpy as np
import scipy.optimize

from genhybr.framework.exceptions import ConfigurationError, UnsupportedSolverError

log = logging.getLogger(__name__)


class InnerSolverBase(ABC):
    r'''Base class for solvers of the projected problem in hybrid methods.

    At iteration :math:`k` the projected problem is

    .. math::
        \min_f \| B_k f - \beta e_1 \|_2^2 + \alpha^2 \| f \|_2^2

    where :math:`B_k` is the :math:`(k+1) \times k` bidiagonal matrix from the
    generalized Golub-Kahan process. Solvers receive the SVD
    :math:`B_k = U_b \Sigma V_b^T`, select a regularisation parameter with the
    configured rule and return the filtered solution.

    Parameters
    ----------
    m : int
        Number of rows in the forward operator.
    n : int
        Number of columns in the forward operator.
    regpar : float or str
        Fixed regularisation parameter or one of ``'gcv'``, ``'wgcv'``,
        ``'dp'``, ``'optimal'``.
    omega : float, optional
        Weight for weighted GCV. Updated by the driver in adaptive mode.
    noise_level : float, optional
        Noise standard deviation for the discrepancy principle.
    error_norm : callable, optional
        ``x -> relative error`` against the true solution, required for
        ``'optimal'``.
    '''

    solver_type = "base"

    def __init__(self, m: int, n: int, regpar: Union[float, str] = "wgcv",
                 omega: Union[float, str] = 1.0, noise_level: float = 0.0,
                 error_norm: Optional[Callable[[np.ndarray], float]] = None):
        if m <= 0 or n <= 0:
            raise ConfigurationError(f"Dimensions m and n must be positive integers. Got m={m}, n={n}")
        if regpar == "optimal" and error_norm is None:
            raise ConfigurationError("regpar='optimal' requires the true solution x_true.")
        if regpar == "dp" and not np.isscalar(noise_level):
            raise ConfigurationError(f"regpar='dp' requires a scalar noise level. Got {noise_level!r}")

        self.m = m
        self.n = n
        self.regpar = regpar
        self.omega = 1.0 if regpar == "gcv" or omega == "adapt" else float(omega)
        self.noise_level = noise_level
        self.error_norm = error_norm

        self.regalpha = 0.0
        self.regalpha_history = []
        self.iteration = 0

    def solve(self, Ub: np.ndarray, s: np.ndarray, Vb: np.ndarray, rhs: np.ndarray,
              QV: Optional[np.ndarray] = None) -> Tuple[np.ndarray, float]:
        '''Solves the projected problem for the current iteration.

        Parameters
        ----------
        Ub, s, Vb : numpy.ndarray
            SVD factors of the bidiagonal matrix :math:`B_k`.
        rhs : numpy.ndarray
            Projected right-hand side :math:`\\beta e_1` of length :math:`k+1`.
        QV : numpy.ndarray, optional
            Preconditioned basis mapping projected solutions to the full space.
            Required by ``'optimal'``.

        Returns
        -------
        f : numpy.ndarray
            Projected solution of length :math:`k`.
        regalpha : float
            Selected regularisation parameter.
        '''
        self._initialize_subspace_components(Ub, s, Vb, rhs, QV)

        regalpha = self._compute_next_regalpha()
        f = self._filtered_solution(regalpha)

        self.regalpha = regalpha
        self.regalpha_history.append(regalpha)
        self._log_status()
        return f, regalpha

    def _initialize_subspace_components(self, Ub, s, Vb, rhs, QV):
        """
        Stores the singular values of :math:`B_k` and the projection
        :math:`\\hat{b} = U_b^T (\\beta e_1)` of the right-hand side onto its
        left singular vectors.
        """
        self.iteration = len(s)
        self.bhat = Ub.T @ rhs
        self.Sb = np.asarray(s)
        self.Sbsq = np.square(self.Sb)
        self.Sbmax = self.Sb[0] if len(self.Sb) else 0.0
        self.Vb = Vb
        self.QV = QV

    def _solution_error(self, regalpha):
        x = self.QV @ self._filtered_solution(regalpha)
        return self.error_norm(x)

    def _discrepancy_target(self) -> float:
        '''Squared residual norm expected from noise alone.'''
        return self.m * self.noise_level**2

    @abstractmethod
    def _compute_next_regalpha(self):
        '''Computes the regularisation parameter for the current iteration.'''
        pass

    @abstractmethod
    def _filtered_solution(self, regalpha):
        '''Returns the projected solution for the given regularisation parameter.'''
        pass

    @staticmethod
    @abstractmethod
    def find_omega(bhat: np.ndarray, s: np.ndarray) -> float:
        '''Computes the adaptive weight omega for weighted GCV.'''
        pass

    @staticmethod
    @abstractmethod
    def gcv_stop(regalpha: float, u: np.ndarray, s: np.ndarray, beta: float, m: int, n: int) -> float:
        '''Evaluates the GCV stopping functional.'''
        pass

    def _log_status(self):
        log.debug("Iteration %d: regalpha = %.4e [%s, %s]",
                  self.iteration, self.regalpha, self.solver_type.upper(), self.regpar)


class TikhonovSolver(InnerSolverBase):
    r'''Tikhonov regularisation of the projected problem.

    .. math::
        f(\alpha) = V_b \, \mathrm{diag}\left(\frac{s_i}{s_i^2 + \alpha^2}\right) \hat{b}_{1:k}

    The parameter :math:`\alpha` is fixed or selected on :math:`[0, s_1]` by
    weighted GCV, the discrepancy principle or minimal error.
    '''

    solver_type = "tikhonov"

    def _residual_filter(self, reg):
        r'''
        Residual filter factors :math:`f_r(s,\alpha) = \frac{\alpha^2}{s^2 + \alpha^2}`.
        '''
        denom = self.Sbsq + reg**2
        return np.divide(reg**2, denom, out=np.ones_like(self.Sbsq), where=denom > 0)

    def _solution_filter(self, reg):
        r'''
        Solution filter factors :math:`f_x(s,\alpha) = \frac{s}{s^2 + \alpha^2}`.
        '''
        denom = self.Sbsq + reg**2
        return np.divide(self.Sb, denom, out=np.zeros_like(self.Sb), where=denom > 0)

    def _projected_residual_norm_sq(self, reg):
        r"""
        Squared projected residual norm

        .. math::
            \|r_\alpha\|^2 = \sum_{i=1}^k \left( f_r(s_i,\alpha) \hat{b}_i \right)^2
            + \sum_{i>k} \hat{b}_i^2
        """
        k = self.iteration
        head = np.sum((self._residual_filter(reg) * self.bhat[:k]) ** 2)
        tail = np.sum(self.bhat[k:] ** 2)
        return head + tail

    def _weighted_trace(self, reg, offset):
        r"""
        Squared trace term of the weighted GCV denominator

        .. math::
            \left( (m - k) + \sum_{i=1}^k \frac{(1-\omega) s_i^2 + \alpha^2}{s_i^2 + \alpha^2} \right)^2
        """
        denom = self.Sbsq + reg**2
        filt = np.divide((1 - self.omega) * self.Sbsq + reg**2, denom,
                         out=np.ones_like(self.Sbsq), where=denom > 0)
        return (offset + np.sum(filt)) ** 2

    def gcv_func(self, reg: float) -> float:
        r"""Projected weighted GCV function

        .. math::
            G(\alpha) = \frac{\|r_\alpha\|^2}{\left(\mathrm{trace}(I - \omega B_k B_k^\dagger(\alpha))\right)^2}
        """
        offset = len(self.bhat) - self.iteration
        return self._projected_residual_norm_sq(reg) / self._weighted_trace(reg, offset)

    def func(self, reg: float) -> Optional[float]:
        '''Rule-specific function of the regularisation parameter.'''
        if self.regpar in ("gcv", "wgcv"):
            return self.gcv_func(reg)
        if self.regpar == "dp":
            return self._projected_residual_norm_sq(reg) - self._discrepancy_target()
        if self.regpar == "optimal":
            return self._solution_error(reg)
        return None

    def _compute_next_regalpha(self):
        if not isinstance(self.regpar, str):
            return float(self.regpar)
        if self.Sbmax <= 0:
            return 0.0
        if self.regpar == "dp":
            return self._discrepancy_regalpha()
        # gcv, wgcv and optimal minimise func on [0, s_max]
        result = scipy.optimize.minimize_scalar(
            self.func, bounds=(0.0, self.Sbmax), method="bounded"
        )
        return float(result.x)

    def _discrepancy_regalpha(self):
        """Finds alpha such that ||r_alpha||^2 = m * noise_level^2 using Brent's method."""
        regalpha_low, regalpha_high = 0.0, self.Sbmax
        f_lo, f_hi = self.func(regalpha_low), self.func(regalpha_high)

        # even with no regularisation the residual is above the noise level
        if f_lo > 0:
            return regalpha_low
        # even with the largest alpha the residual is below the noise level
        if f_hi < 0:
            return regalpha_high

        result = scipy.optimize.root_scalar(
            self.func, bracket=[regalpha_low, regalpha_high], method="brentq"
        )
        return float(result.root)

    def _filtered_solution(self, regalpha):
        k = self.iteration
        return self.Vb @ (self._solution_filter(regalpha) * self.bhat[:k])

    @staticmethod
    def find_omega(bhat: np.ndarray, s: np.ndarray) -> float:
        '''
        Omega such that the derivative of the GCV function vanishes at
        :math:`\\alpha = s_k`, the smallest singular value. Undefined (``nan``)
        when :math:`s_k = 0`, e.g. after a breakdown of the GK process.
        '''
        m = len(bhat)
        n = len(s)
        alpha = s[-1]
        if alpha == 0:
            return np.nan
        t0 = np.sum(np.abs(bhat[n:m]) ** 2)
        s2 = np.abs(s) ** 2
        alpha2 = alpha**2

        tt = 1.0 / (s2 + alpha2)

        t1 = np.sum(s2 * tt)
        t2 = np.abs(bhat[:n] * alpha * s) ** 2
        t3 = np.sum(t2 * np.abs(tt**3))

        t4 = np.sum((s * tt) ** 2)
        t5 = np.sum(np.abs(alpha2 * bhat[:n] * tt) ** 2)

        v1 = np.abs(bhat[:n] * s) ** 2
        v2 = np.sum(v1 * np.abs(tt**3))

        return (m * alpha2 * v2) / (t1 * t3 + t4 * (t5 + t0))

    @staticmethod
    def gcv_stop(regalpha: float, u: np.ndarray, s: np.ndarray, beta: float, m: int, n: int) -> float:
        k = len(s)
        beta2 = beta**2
        s2 = np.abs(s) ** 2
        alpha2 = regalpha**2

        t1 = 1.0 / (s2 + alpha2)
        t2 = np.abs(alpha2 * u[:k] * t1) ** 2
        t3 = s2 * t1

        num = beta2 * (np.sum(t2) + np.abs(u[k]) ** 2) / n
        den = ((m - np.sum(t3)) / n) ** 2
        return num / den


class TSVDSolver(InnerSolverBase):
    r'''Truncated SVD regularisation of the projected problem.

    The regularisation parameter is the truncation index :math:`j`:

    .. math::
        f_j = \sum_{i=1}^j \frac{\hat{b}_i}{s_i} v_i
    '''

    solver_type = "tsvd"

    def _numerical_rank(self):
        if self.Sbmax <= 0:
            return 0
        tol = self.Sbmax * np.finfo(float).eps * len(self.bhat)
        return int(np.count_nonzero(self.Sb > tol))

    def _projected_residual_norm_sq(self, j):
        return np.sum(self.bhat[j:] ** 2)

    def func(self, j: int) -> Optional[float]:
        '''Rule-specific function of the truncation index.'''
        if self.regpar in ("gcv", "wgcv"):
            return self._projected_residual_norm_sq(j) / (len(self.bhat) - self.omega * j) ** 2
        if self.regpar == "dp":
            return self._projected_residual_norm_sq(j) - self._discrepancy_target()
        if self.regpar == "optimal":
            return self._solution_error(j)
        return None

    def _compute_next_regalpha(self):
        rank = self._numerical_rank()
        if not isinstance(self.regpar, str):
            return int(min(round(self.regpar), rank))
        if rank == 0:
            return 0
        levels = np.arange(1, rank + 1)
        if self.regpar == "dp":
            # residual decreases with j; take the smallest level within the target
            below = [j for j in levels if self.func(j) <= 0]
            return int(below[0]) if below else rank
        values = np.array([self.func(j) for j in levels])
        return int(levels[np.argmin(values)])

    def _filtered_solution(self, regalpha):
        j = int(regalpha)
        return self.Vb[:, :j] @ (self.bhat[:j] / self.Sb[:j])

    @staticmethod
    def find_omega(bhat: np.ndarray, s: np.ndarray) -> float:
        '''
        Omega for TSVD assuming the optimal truncation is the full rank
        :math:`k`.
        '''
        m = len(bhat)
        k_opt = len(s)
        return (m * bhat[k_opt - 1] ** 2) / (k_opt * bhat[k_opt - 1] ** 2 + 2 * bhat[k_opt] ** 2)

    @staticmethod
    def gcv_stop(regalpha: float, u: np.ndarray, s: np.ndarray, beta: float, m: int, n: int) -> float:
        k = len(s)
        j = int(regalpha)
        t2 = np.abs(u[j:k + 1]) ** 2
        return n * beta**2 * np.sum(t2) / ((m - j) ** 2)


INNER_SOLVERS = {
    TSVDSolver.solver_type: TSVDSolver,
    TikhonovSolver.solver_type: TikhonovSolver,
}


def _solver_class(solver):
    try:
        return INNER_SOLVERS[str(solver).lower()]
    except KeyError:
        raise UnsupportedSolverError(
            f"Unknown solver {solver!r}. Supported solvers are {tuple(INNER_SOLVERS)}"
        ) from None


def get_inner_solver(solver: str, m: int, n: int, **kwargs) -> InnerSolverBase:
    '''Instantiates the inner solver registered under ``solver``.'''
    return _solver_class(solver)(m, n, **kwargs)


def findomega(bhat: np.ndarray, s: np.ndarray, solver: str) -> float:
    '''Computes the adaptive weighted-GCV parameter omega.

    Parameters
    ----------
    bhat : numpy.ndarray
        Projection :math:`U_b^T (\\beta e_1)` of the right-hand side onto the
        left singular vectors of :math:`B_k` (length :math:`k+1`).
    s : numpy.ndarray
        Singular values of :math:`B_k`.
    solver : str
        ``'tsvd'`` or ``'tikhonov'``.

    Returns
    -------
    float
    '''
    return float(_solver_class(solver).find_omega(np.asarray(bhat), np.asarray(s)))


def GCVstopfun(regalpha: float, u: np.ndarray, s: np.ndarray, beta: float, m: int, n: int,
               solver: str) -> float:
    r'''Evaluates the GCV function :math:`G(k, \alpha)` used to pick the stopping iteration.

    Parameters
    ----------
    regalpha : float or int
        Regularisation parameter at iteration :math:`k` (truncation index for
        TSVD).
    u : numpy.ndarray
        First row of the left singular vectors of :math:`B_k` (length :math:`k+1`).
    s : numpy.ndarray
        Singular values of :math:`B_k`.
    beta : float
        Weighted norm of the right-hand side.
    m, n : int
        Size of the original problem.
    solver : str
        ``'tsvd'`` or ``'tikhonov'``.

    Returns
    -------
    float
    '''
    return float(_solver_class(solver).gcv_stop(regalpha, np.asarray(u), np.asarray(s), beta, m, n))
