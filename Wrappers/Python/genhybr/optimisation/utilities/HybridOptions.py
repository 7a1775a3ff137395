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

import copy
import logging

import numpy as np

from genhybr.framework.exceptions import ConfigurationError, UnsupportedSolverError

log = logging.getLogger(__name__)

INNER_SOLVER_NAMES = ("none", "tsvd", "tikhonov")
REGPAR_METHODS = ("dp", "gcv", "wgcv", "optimal")

# cap applied to the default number of iterations
DEFAULT_MAX_ITERATION_CAP = 100


class HybridOptions:
    r"""Options for the generalized hybrid (genHyBR) solver.

    Parameters
    ----------
    inner_solver : str, optional
        Solver for the projected problem: ``'none'``, ``'tsvd'`` or
        ``'tikhonov'``. Default is ``'tikhonov'``.
    regpar : float or str, optional
        Regularisation parameter, either a non-negative value (a truncation
        index for TSVD) or a selection method: ``'dp'`` (discrepancy
        principle), ``'gcv'``, ``'wgcv'`` (weighted GCV) or ``'optimal'``
        (requires ``x_true``). Default is ``'wgcv'``.
    noise_level : float or str, optional
        Noise standard deviation used by ``'dp'``, or ``'est'`` to estimate it
        from the data with wavelets. Default is ``'est'``.
    omega : float or str, optional
        Weight of the weighted GCV method, or ``'adapt'`` to select it at each
        iteration. Default is ``'adapt'``.
    max_iteration : int, optional
        Maximum number of GK iterations. Default is ``min(m, n, 100)``.
    reorth : bool, optional
        Reorthogonalise the GK bases. Default is False.
    x_true : numpy.ndarray, optional
        True solution (without the bias block). Enables error norms and the
        ``'optimal'`` method.
    reg_start : int, optional
        Begin regularising the projected problem at this iteration. Default is 2.
    flat_tol : float, optional
        Tolerance for detecting a flat GCV curve. Default is 1e-6.
    min_tol : int, optional
        Window of iterations for confirming a minimum of the GCV curve.
        Default is 10.
    res_tol : tuple of float, optional
        Residual tolerances ``(atol, btol)``. Default is ``(1e-6, 1e-6)``.
    nbeta : int, optional
        Number of trailing bias coefficients excluded from the error norms.
        Default is 0.
    store_basis : bool, optional
        Keep ``U``, ``V``, ``QV`` and ``B`` in the output. Default is False
        (large-scale problems).
    """

    def __init__(
        self,
        inner_solver: str = "tikhonov",
        regpar="wgcv",
        noise_level="est",
        omega="adapt",
        max_iteration: int = None,
        reorth: bool = False,
        x_true=None,
        reg_start: int = 2,
        flat_tol: float = 1e-6,
        min_tol: int = 10,
        res_tol=(1e-6, 1e-6),
        nbeta: int = 0,
        store_basis: bool = False,
    ):
        self.inner_solver = inner_solver
        self.regpar = regpar
        self.noise_level = noise_level
        self.omega = omega
        self.max_iteration = max_iteration
        self.reorth = bool(reorth)
        self.x_true = x_true
        self.reg_start = reg_start
        self.flat_tol = flat_tol
        self.min_tol = min_tol
        self.res_tol = res_tol
        self.nbeta = nbeta
        self.store_basis = bool(store_basis)

        self._validate()

    @classmethod
    def defaults(cls):
        """Returns the default options."""
        return cls()

    def copy(self, **changes):
        """Returns a validated copy with the given options replaced."""
        new = copy.copy(self)
        for key, value in changes.items():
            if key not in vars(new):
                raise ConfigurationError(f"Unknown option '{key}'")
            setattr(new, key, value)
        new._validate()
        return new

    def resolve(self, m, n):
        """Returns a copy with problem-dependent defaults filled in."""
        max_iteration = self.max_iteration
        if max_iteration is None:
            max_iteration = min(m, n, DEFAULT_MAX_ITERATION_CAP)
        return self.copy(max_iteration=max_iteration)

    @property
    def has_truth(self):
        return self.x_true is not None

    @property
    def adaptive_omega(self):
        """True for the adaptive weighted GCV method."""
        return self.regpar == "wgcv" and self.omega == "adapt"

    def _validate(self):
        if not isinstance(self.inner_solver, str) or self.inner_solver.lower() not in INNER_SOLVER_NAMES:
            raise UnsupportedSolverError(
                f"inner_solver must be one of {INNER_SOLVER_NAMES}. Got {self.inner_solver!r}"
            )
        self.inner_solver = self.inner_solver.lower()

        if isinstance(self.regpar, str):
            if self.regpar.lower() not in REGPAR_METHODS:
                raise ConfigurationError(
                    f"regpar must be a non-negative scalar or one of {REGPAR_METHODS}. Got {self.regpar!r}"
                )
            self.regpar = self.regpar.lower()
        else:
            self.regpar = _non_negative("regpar", self.regpar)

        if isinstance(self.noise_level, str):
            if self.noise_level.lower() != "est":
                raise ConfigurationError(f"noise_level must be a non-negative scalar or 'est'. Got {self.noise_level!r}")
            self.noise_level = "est"
        else:
            self.noise_level = _non_negative("noise_level", self.noise_level)

        if isinstance(self.omega, str):
            if self.omega.lower() != "adapt":
                raise ConfigurationError(f"omega must be a non-negative scalar or 'adapt'. Got {self.omega!r}")
            self.omega = "adapt"
        else:
            self.omega = _non_negative("omega", self.omega)

        if self.max_iteration is not None:
            self.max_iteration = _positive_int("max_iteration", self.max_iteration)
        self.reg_start = _positive_int("reg_start", self.reg_start)
        self.min_tol = _positive_int("min_tol", self.min_tol)
        self.flat_tol = _non_negative("flat_tol", self.flat_tol)

        if np.isscalar(self.res_tol):
            self.res_tol = (self.res_tol, self.res_tol)
        if len(self.res_tol) != 2:
            raise ConfigurationError(f"res_tol must be a pair (atol, btol). Got {self.res_tol!r}")
        self.res_tol = tuple(_non_negative("res_tol", t) for t in self.res_tol)

        if self.nbeta != 0:
            self.nbeta = _positive_int("nbeta", self.nbeta)

        if self.x_true is not None:
            self.x_true = np.asarray(self.x_true)

    def __repr__(self):
        fields = ", ".join(
            f"{key}={value!r}" for key, value in vars(self).items() if key != "x_true"
        )
        return f"HybridOptions({fields}, x_true={'set' if self.has_truth else None})"


def _non_negative(name, value):
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a non-negative scalar. Got {value!r}") from None
    if not value >= 0:
        raise ConfigurationError(f"{name} must be a non-negative scalar. Got {value}")
    return value


def _positive_int(name, value):
    if isinstance(value, (bool, str)) or not np.isscalar(value):
        raise ConfigurationError(f"{name} must be a positive integer. Got {value!r}")
    if int(value) != value or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer. Got {value!r}")
    return int(value)
