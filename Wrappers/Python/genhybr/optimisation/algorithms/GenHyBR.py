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

import logging

import numpy as np

from genhybr.framework.exceptions import ConfigurationError
from genhybr.optimisation.algorithms.Algorithm import Algorithm
from genhybr.optimisation.algorithms.GenGKB import GenGKB
from genhybr.optimisation.operators import aslinearoperator
from genhybr.optimisation.utilities.HybridOptions import HybridOptions
from genhybr.optimisation.utilities.HybridOutput import HybridOutput
from genhybr.optimisation.utilities.HybridStopping import GCVStoppingRule, StopDecision, StopFlag
from genhybr.optimisation.utilities.HybridUpdateReg import GCVstopfun, findomega, get_inner_solver
from genhybr.optimisation.utilities.noise import estimate_noise_level

log = logging.getLogger(__name__)


class GenHyBR(Algorithm):
    r"""Generalized hybrid iterative method (genHyBR)

    Computes the MAP estimate

    .. math::
        \min_x \| b - A x \|_{R^{-1}}^2 + \lambda^2 \| x \|_{Q^{-1}}^2

    where :math:`Q` is the prior covariance and :math:`R` the noise
    covariance. The generalized Golub-Kahan process builds the projected
    problem with the bidiagonal matrix :math:`B_k`, which is regularised at
    each iteration by the inner solver. The solution is :math:`x_k = Q V_k f_k`.

    Iterations stop on a flat GCV curve (flag 1), a minimum of the GCV curve
    confirmed over ``min_tol`` iterations (flag 2), the maximum number of
    iterations (flag 3) or the residual tolerance (flag 4). When ``x_true``
    is given the iterations continue to ``max_iteration`` so that the error
    norms are available, and the first stop is reported.

    Parameters
    ----------
    A : LinearOperator, numpy.ndarray, scipy.sparse matrix or scipy LinearOperator
        Forward operator, (m x n).
    b : numpy.ndarray
        Data, m entries (any shape).
    Q : LinearOperator or matrix
        Prior covariance, (n x n).
    R : LinearOperator or matrix
        Noise covariance, (m x m). Must implement ``inverse``.
    mask : numpy.ndarray of bool, optional
        Entries of the solution (without the bias block) used for the error norms.
    options : HybridOptions, optional
        Solver options. Default is :meth:`HybridOptions.defaults`.
    **option_kwargs
        Options that override ``options``, e.g. ``inner_solver='tsvd'``.

    Reference
    ---------
    Chung and Saibaba, "Generalized hybrid iterative methods for large-scale
    Bayesian inverse problems", SIAM J. Sci. Comput. 39 (2017), S24-S46.
    """

    def __init__(self, A=None, b=None, Q=None, R=None, mask=None, options=None, **option_kwargs):
        super().__init__()
        self.set_up(A=A, b=b, Q=Q, R=R, mask=mask, options=options, **option_kwargs)

    def set_up(self, A, b, Q, R, mask=None, options=None, **option_kwargs):
        """Validates the problem, sets up the inner solver and performs the first GK step."""
        log.info("%s setting up", self.__class__.__name__)

        missing = [name for name, value in (("A", A), ("b", b), ("Q", Q), ("R", R)) if value is None]
        if missing:
            raise ConfigurationError(f"Missing required input(s): {', '.join(missing)}")

        if options is None:
            options = HybridOptions.defaults()
        if option_kwargs:
            options = options.copy(**option_kwargs)

        # 1. Problem definition
        self.A = aslinearoperator(A)
        self.m, self.n = self.A.shape
        self.Q = aslinearoperator(Q)
        self.R = aslinearoperator(R)
        if self.Q.shape != (self.n, self.n):
            raise ConfigurationError(f"Q must be ({self.n} x {self.n}). Got {self.Q.shape}")
        if self.R.shape != (self.m, self.m):
            raise ConfigurationError(f"R must be ({self.m} x {self.m}). Got {self.R.shape}")

        b = np.asarray(b, dtype=float)
        # an image b keeps its shape when A is a plain matrix
        self.data_shape = self.A.range_shape
        if len(self.data_shape) == 1 and b.ndim == 2:
            self.data_shape = b.shape
        self.b = b.reshape(-1)
        if self.b.size != self.m:
            raise ConfigurationError(f"b must have {self.m} entries. Got {self.b.size}")
        if not np.any(self.b):
            raise ConfigurationError("b is zero, the solution is x = 0")

        self.options = options.resolve(self.m, self.n)
        self.max_iteration = self.options.max_iteration

        # 2. Ground truth for the error norms
        self._set_up_truth(mask)
        if self.options.regpar == "optimal" and not self.options.has_truth:
            raise ConfigurationError("regpar='optimal' requires the true solution x_true.")

        # 3. Inner solver and stopping rule
        noise_level = self.options.noise_level
        if self.options.regpar == "dp" and noise_level == "est":
            noise_level = estimate_noise_level(self.b.reshape(self.data_shape))
        self.noise_level = noise_level

        if self.options.inner_solver == "none":
            self.inner_solver = None
        else:
            self.inner_solver = get_inner_solver(
                self.options.inner_solver, self.m, self.n,
                regpar=self.options.regpar,
                omega=self.options.omega,
                noise_level=0.0 if noise_level == "est" else noise_level,
                error_norm=self.relative_error if self.options.has_truth else None,
            )
        self.stopping_rule = GCVStoppingRule(
            reg_start=self.options.reg_start,
            flat_tol=self.options.flat_tol,
            min_tol=self.options.min_tol,
        )

        # 4. Traces and output record
        self.regalpha = 0.0
        self.regalpha_history = []
        self.gcv_history = []
        self.omega_history = []
        self.output = HybridOutput(self.max_iteration, has_truth=self.options.has_truth)

        self.terminate = True
        self.stopped = False
        self.decision = None
        self.solution = None

        # 5. First GK step, solved without regularisation
        self.gkb = GenGKB(self.A, self.Q, self.R, self.b, self.max_iteration + 1,
                          reorth=self.options.reorth)
        self.beta = self.gkb.beta
        self.gkb.step()

        f = np.linalg.lstsq(self.gkb.B, self._projected_rhs(), rcond=None)[0]
        self.x = self.gkb.QV @ f
        self.norma = 0.0
        self.normr = self.beta
        self._residual_current = True
        self.output.record(self.beta, float(np.linalg.norm(self.x)), self._error_or_none(self.x))

        self.configured = True
        log.info("%s configured: m = %d, n = %d, beta = %e, options = %r",
                 self.__class__.__name__, self.m, self.n, self.beta, self.options)

    def _set_up_truth(self, mask):
        nbeta = self.options.nbeta
        if nbeta >= self.n:
            raise ConfigurationError(f"nbeta must be smaller than n = {self.n}. Got {nbeta}")
        self.nbeta = nbeta
        size = self.n - nbeta

        self.mask = None
        if mask is not None:
            self.mask = np.asarray(mask, dtype=bool).reshape(-1)
            if self.mask.size != size:
                raise ConfigurationError(f"mask must have {size} entries. Got {self.mask.size}")

        self.x_true = None
        if self.options.has_truth:
            x_true = np.asarray(self.options.x_true, dtype=float).reshape(-1)
            if x_true.size != size:
                raise ConfigurationError(f"x_true must have {size} entries. Got {x_true.size}")
            self.x_true = x_true if self.mask is None else x_true[self.mask]
            self.norm_true = np.linalg.norm(self.x_true)
            if self.norm_true == 0:
                raise ConfigurationError("x_true must be nonzero on the mask")

    def relative_error(self, x):
        """Relative error of the masked non-bias block of ``x`` against ``x_true``."""
        x = np.asarray(x).reshape(-1)[:self.n - self.nbeta]
        if self.mask is not None:
            x = x[self.mask]
        return float(np.linalg.norm(x - self.x_true) / self.norm_true)

    def _error_or_none(self, x):
        return self.relative_error(x) if self.x_true is not None else None

    @property
    def solver_name(self):
        """Name of the inner solver used at the current iteration."""
        if self.inner_solver is None or self.gkb.k < self.options.reg_start:
            return "none"
        return self.inner_solver.solver_type

    def _projected_rhs(self):
        rhs = np.zeros(self.gkb.B.shape[0])
        rhs[0] = self.beta
        return rhs

    def update(self):
        """One generalized GK step followed by the projected solve.

        Flat and windowed-minimum stops end the iteration before the residual
        is computed, so that iteration adds no entry to the norms or ``loss``.
        """
        self.gkb.step()
        i = self.gkb.k
        iteration = i - 1
        B = self.gkb.B
        rhs = self._projected_rhs()
        self._residual_current = False

        solver = self.solver_name
        if solver == "none":
            f = np.linalg.lstsq(B, rhs, rcond=None)[0]
            regalpha = 0.0
            self.regalpha_history.append(regalpha)
            self.gcv_history.append(np.nan)
            if self.options.adaptive_omega and self.inner_solver is not None:
                self.omega_history.append(np.nan)
        else:
            Ub, s, VbT = np.linalg.svd(B)
            if self.options.adaptive_omega:
                self._update_omega(Ub.T @ rhs, s, solver, iteration)

            f, regalpha = self.inner_solver.solve(Ub, s, VbT.T, rhs, QV=self.gkb.QV)
            self.regalpha_history.append(regalpha)
            self.gcv_history.append(GCVstopfun(regalpha, Ub[0, :], s, self.beta, self.m, self.n, solver))

        x = self.gkb.QV @ f
        self.regalpha = regalpha

        if solver != "none" and self.terminate:
            decision = self.stopping_rule.check(self.gcv_history, regalpha, x)
            if decision is not None:
                self._record_stop(decision)
                if self.stopped:
                    return

        r = self.b - self.A.direct(x)
        self.x = x
        self.normr = float(np.linalg.norm(r))
        self.norma = float(np.linalg.norm([self.norma, B[i - 1, i - 1], B[i, i - 1]]))
        normar = float(np.linalg.norm(self.A.adjoint(r)))
        normx = float(np.linalg.norm(x))

        self.output.record(self.normr, normx, self._error_or_none(x))
        self._residual_current = True

        if self.terminate and self._residual_converged(normar, normx):
            self._record_stop(StopDecision(StopFlag.RESIDUAL_TOLERANCE, iteration, regalpha, x))

    def _update_omega(self, bhat, s, solver, iteration):
        """Appends this iteration's omega; the inner solver uses the mean of the finite ones."""
        omega = findomega(bhat, s, solver)
        if np.isfinite(omega):
            omega = min(1.0, omega)
        else:
            log.warning("Adaptive omega undefined at iteration %d, keeping omega = %g",
                        iteration, self.inner_solver.omega)
        self.omega_history.append(omega)
        if np.any(np.isfinite(self.omega_history)):
            self.inner_solver.omega = float(np.nanmean(self.omega_history))

    def _residual_converged(self, normar, normx):
        atol, btol = self.options.res_tol
        if self.normr <= atol * self.beta + btol * self.norma * normx:
            return True
        return self.normr > 0 and self.norma > 0 and normar / (self.norma * self.normr) <= btol

    def _record_stop(self, decision):
        """Records the first stop; ends the iterations unless ``x_true`` is known."""
        self.decision = decision
        self.terminate = False
        if self.x_true is None:
            self.stopped = True
            log.info("%s stopping at iteration %d: %s", self.__class__.__name__,
                     decision.iteration, decision.flag.description)
        else:
            log.info("%s would stop at iteration %d: %s; continuing since x_true is known",
                     self.__class__.__name__, decision.iteration, decision.flag.description)

    def update_objective(self):
        """Stores the squared residual norm and ends the iterations after a stop."""
        if self._residual_current:
            self.loss.append(self.normr**2)
        if self.stopped:
            raise StopIteration()

    def should_stop(self):
        return self.stopped or super().should_stop()

    def finalise(self, force=False):
        """Fills the output record. Does nothing before the iterations have ended unless ``force``."""
        if self.output.finalised or not (force or self.should_stop()):
            return
        decision = self.decision
        omega_history = self.omega_history
        if self.stopped:
            iterations = decision.iteration
            regalpha_history = self.regalpha_history[:iterations]
            gcv_history = self.gcv_history[:iterations]
            omega_history = omega_history[:iterations]
        else:
            regalpha_history = self.regalpha_history
            gcv_history = self.gcv_history
            if decision is None:
                decision = StopDecision(StopFlag.MAX_ITERATIONS, self.iteration, self.regalpha, self.x)

        basis = None
        if self.options.store_basis:
            basis = (self.gkb.U, self.gkb.V, self.gkb.QV, self.gkb.B)
        self.output.finalise(decision.flag, decision.iteration, decision.regalpha,
                             regalpha_history, gcv_history, omega_history, basis=basis)
        self.solution = np.asarray(decision.x).reshape(self.A.domain_shape)

    def get_output(self):
        """Returns the solution, reshaped to the domain of ``A`` once finalised."""
        if self.solution is not None:
            return self.solution
        return self.x.reshape(self.A.domain_shape)

    def solve(self, callbacks=None):
        """Runs to termination and returns ``(x, output)``."""
        self.run(callbacks=callbacks)
        self.finalise(force=True)
        return self.get_output(), self.output


def genhybr(A=None, b=None, Q=None, R=None, mask=None, options=None, callbacks=None, **option_kwargs):
    r"""Solves :math:`b = A x + \epsilon` with the generalized hybrid method.

    Parameters
    ----------
    A, b, Q, R, mask, options, **option_kwargs
        See :class:`GenHyBR`.
    callbacks : list of callable, optional
        Called after every iteration with the :class:`GenHyBR` instance.

    Returns
    -------
    x : numpy.ndarray
        Solution, shaped like the domain of ``A``.
    output : HybridOutput
        Diagnostics of the solve.

    Examples
    --------
    >>> x, output = genhybr(A, b, Q, R, inner_solver='tikhonov', regpar='wgcv')
    >>> output.flag, output.iterations
    """
    return GenHyBR(A, b, Q, R, mask=mask, options=options, **option_kwargs).solve(callbacks=callbacks)
