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
from typing import Optional

import numpy as np
import matplotlib.pyplot as plt

from genhybr.optimisation.utilities.HybridStopping import StopFlag

log = logging.getLogger(__name__)


class HybridOutput:
    '''Diagnostics of a generalized hybrid solve.

    Attributes
    ----------
    iterations : int
        Stopping iteration.
    gcv_stop : numpy.ndarray
        GCV curve used to find the stopping iteration (``nan`` where no
        regularisation was applied).
    error_norms : numpy.ndarray
        Relative error norms per GK step (requires ``x_true``).
    residual_norms : numpy.ndarray
        Residual norms per GK step.
    solution_norms : numpy.ndarray
        Solution norms per GK step.
    flag : StopFlag
        Stopping condition: 1 flat GCV curve, 2 minimum of the GCV curve,
        3 maximum number of iterations, 4 residual tolerance.
    regalpha : float
        Regularisation parameter at ``iterations``.
    regalpha_history : numpy.ndarray
        Regularisation parameters of all iterations.
    omega_history : numpy.ndarray
        Adaptive weighted-GCV parameters (adaptive mode only).
    U, V, QV, B : numpy.ndarray or None
        GK bases and bidiagonal matrix, only kept with ``store_basis``.
    '''

    def __init__(self, max_iteration: int, has_truth: bool = False):
        self.iterations = max_iteration
        self.has_truth = has_truth
        self.gcv_stop = np.empty(0)
        self.flag = StopFlag.MAX_ITERATIONS
        self.regalpha = 0.0
        self.regalpha_history = np.empty(0)
        self.omega_history = np.empty(0)
        self.U = None
        self.V = None
        self.QV = None
        self.B = None
        self.finalised = False

        self._error_norms = []
        self._residual_norms = []
        self._solution_norms = []

    def record(self, residual_norm: float, solution_norm: float, error_norm: Optional[float] = None):
        '''Stores the norms of one GK step.'''
        if self.finalised:
            raise RuntimeError("Cannot record norms on a finalised output.")
        if error_norm is not None:
            self._error_norms.append(error_norm)
        self._residual_norms.append(residual_norm)
        self._solution_norms.append(solution_norm)

    @property
    def error_norms(self):
        return np.asarray(self._error_norms, dtype=float)

    @property
    def residual_norms(self):
        return np.asarray(self._residual_norms, dtype=float)

    @property
    def solution_norms(self):
        return np.asarray(self._solution_norms, dtype=float)

    def finalise(self, flag: StopFlag, iterations: int, regalpha: float, regalpha_history, gcv_history,
                 omega_history=(), basis: Optional[tuple] = None):
        '''Sets the terminal fields. Called once, from every exit path of the solver.

        Parameters
        ----------
        flag : StopFlag
            Stopping condition.
        iterations : int
            Reported stopping iteration.
        regalpha : float
            Regularisation parameter at the stopping iteration.
        regalpha_history, gcv_history : sequence of float
            Traces to store, already sliced by the caller.
        omega_history : sequence of float, optional
            Adaptive omega values.
        basis : tuple, optional
            ``(U, V, QV, B)`` to keep in the output.
        '''
        if self.finalised:
            raise RuntimeError("Output has already been finalised.")
        self.flag = StopFlag(flag)
        self.iterations = int(iterations)
        self.regalpha = regalpha
        self.regalpha_history = np.asarray(regalpha_history, dtype=float)
        self.gcv_stop = np.asarray(gcv_history, dtype=float)
        self.omega_history = np.asarray(omega_history, dtype=float)
        if basis is not None:
            self.U, self.V, self.QV, self.B = (np.array(M, copy=True) for M in basis)
        self.finalised = True
        log.info("Stopped at iteration %d: %s (flag %d), regalpha = %e",
                 self.iterations, self.flag.description, self.flag, self.regalpha)

    def plot_history(self, show_norms: bool = False, filepath: Optional[str] = None):
        '''
        Plots the regularisation parameter history and the GCV stopping curve.

        Parameters
        ----------
        show_norms : bool, optional
            If True, adds a subplot with the residual, solution and (if
            available) error norms. Default is False.
        filepath : str, optional
            If provided, saves the figure to this path.
        '''
        if len(self.regalpha_history) == 0:
            raise ValueError("No regularization parameter history available to plot.")
        if show_norms and len(self.residual_norms) == 0:
            raise ValueError("No norm history available to plot.")

        num_subs = 3 if show_norms else 2
        fig, axes = plt.subplots(num_subs, 1, figsize=(8, 3.5 * num_subs), sharex=True)
        iters = np.arange(1, len(self.regalpha_history) + 1)

        # Subplot 1: Regularization History
        ax_alpha = axes[0]
        ax_alpha.plot(iters, self.regalpha_history, marker='o', color='tab:blue', label=r'$\alpha$')
        ax_alpha.set_ylabel(r'Regularization $\alpha$')
        if np.all(self.regalpha_history > 0):
            ax_alpha.set_yscale('log')
        ax_alpha.set_title('Regularization Parameter History')
        ax_alpha.grid(True, which="both", ls="-", alpha=0.5)

        # Subplot 2: GCV stopping curve
        ax_gcv = axes[1]
        ax_gcv.semilogy(np.arange(1, len(self.gcv_stop) + 1), self.gcv_stop,
                        marker='x', color='tab:red', linestyle='--')
        ax_gcv.axvline(self.iterations, color="gray", linestyle=":",
                       label=f"stop: {self.flag.description}")
        ax_gcv.set_ylabel('GCV')
        ax_gcv.legend()
        ax_gcv.grid(True, alpha=0.5)

        if show_norms:
            ax_norm = axes[2]
            # norms start at the initialisation step
            steps = np.arange(len(self.residual_norms))
            ax_norm.semilogy(steps, self.residual_norms, label='residual')
            ax_norm.semilogy(steps, self.solution_norms, label='solution')
            if len(self.error_norms):
                ax_norm.semilogy(steps, self.error_norms, label='relative error')
            ax_norm.set_ylabel('Norms')
            ax_norm.legend()
            ax_norm.grid(True, alpha=0.5)
        axes[-1].set_xlabel('Iteration')

        plt.tight_layout()
        if filepath:
            plt.savefig(filepath)
        plt.show()
        plt.close(fig)

    def __repr__(self):
        return (f"HybridOutput(iterations={self.iterations}, flag={int(self.flag)}, "
                f"regalpha={self.regalpha!r})")
