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

from collections import namedtuple
from enum import IntEnum
import logging
from typing import Optional, Sequence

import numpy as np

log = logging.getLogger(__name__)


class StopFlag(IntEnum):
    """Stopping condition reported by the hybrid solver."""

    FLAT_GCV = 1
    GCV_MINIMUM = 2
    MAX_ITERATIONS = 3
    RESIDUAL_TOLERANCE = 4

    @property
    def description(self):
        return _FLAG_DESCRIPTIONS[self]


_FLAG_DESCRIPTIONS = {
    StopFlag.FLAT_GCV: "flat GCV curve",
    StopFlag.GCV_MINIMUM: "minimum of GCV curve within window",
    StopFlag.MAX_ITERATIONS: "performed maximum number of iterations",
    StopFlag.RESIDUAL_TOLERANCE: "achieved residual tolerance",
}

StopDecision = namedtuple("StopDecision", ["flag", "iteration", "regalpha", "x"])

# Candidate stop opened at the first uptick of the GCV curve
WarningWindow = namedtuple("WarningWindow", ["x", "iteration", "regalpha"])


class GCVStoppingRule:
    r"""Semiconvergence detection on the GCV stopping curve.

    The rule is fed the GCV trace after every iteration, where ``gcv[j]``
    belongs to iteration :math:`j+1`, and returns a :class:`StopDecision` when
    one of two tests fires:

    1. **Flat curve**: :math:`|G_k - G_{k-1}| / G_{r-1} <` ``flat_tol``, with
       :math:`r` the iteration at which regularisation starts.
    2. **Windowed minimum**: the first uptick :math:`G_{k-1} < G_k` opens a
       :class:`WarningWindow` at iteration :math:`k`. Once ``min_tol`` further
       values are available the candidate is confirmed if it is still the
       minimum, otherwise it was a bump and scanning resumes.

    Reference: Chung, Nagy and O'Leary, "A Weighted-GCV Method for
    Lanczos-Hybrid Regularization", ETNA 28 (2008), pp. 149-167.

    Parameters
    ----------
    reg_start : int, optional
        Iteration at which regularisation starts. Default is 2.
    flat_tol : float, optional
        Flatness tolerance. Default is 1e-6.
    min_tol : int, optional
        Window length used to confirm a minimum. Default is 10.
    """

    def __init__(self, reg_start: int = 2, flat_tol: float = 1e-6, min_tol: int = 10):
        self.reg_start = max(int(reg_start), 2)
        self.flat_tol = flat_tol
        self.min_tol = int(min_tol)
        self.warning = None
        self._degenerate_reported = False

    @property
    def active(self):
        return self.warning is not None

    def check(self, gcv: Sequence[float], regalpha: float, x: np.ndarray) -> Optional[StopDecision]:
        """Runs the stopping tests on the current GCV trace.

        Parameters
        ----------
        gcv : sequence of float
            GCV values, newest last; ``len(gcv)`` is the current iteration.
        regalpha : float
            Regularisation parameter of the current iteration.
        x : numpy.ndarray
            Solution of the current iteration.

        Returns
        -------
        StopDecision or None
        """
        k = len(gcv)
        # two regularised values are needed
        if k < self.reg_start:
            return None

        if self._is_flat(gcv):
            log.info("GCV curve is flat at iteration %d", k)
            return StopDecision(StopFlag.FLAT_GCV, k, regalpha, x)

        if self.warning is not None:
            if k > self.warning.iteration + self.min_tol:
                return self._resolve_window(gcv)
        elif gcv[k - 2] < gcv[k - 1]:
            log.debug("GCV curve increases at iteration %d", k)
            self.warning = WarningWindow(x=np.array(x, copy=True), iteration=k, regalpha=regalpha)
        return None

    def _is_flat(self, gcv):
        reference = gcv[self.reg_start - 2]
        if not np.isfinite(reference) or reference == 0:
            if not self._degenerate_reported:
                log.warning("GCV value at iteration %d is %s; flat-curve test disabled",
                            self.reg_start - 1, reference)
                self._degenerate_reported = True
            return False
        return abs(gcv[-1] - gcv[-2]) / reference < self.flat_tol

    def _resolve_window(self, gcv):
        saved = self.warning
        later = np.asarray(gcv[saved.iteration:])
        if np.all(gcv[saved.iteration - 1] <= later):
            log.info("Minimum of GCV curve confirmed at iteration %d", saved.iteration)
            self.warning = None
            return StopDecision(StopFlag.GCV_MINIMUM, saved.iteration, saved.regalpha, saved.x)
        log.debug("GCV bump at iteration %d discarded", saved.iteration)
        self.warning = None
        return None
