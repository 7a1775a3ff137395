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

from genhybr.optimisation.utilities.norms import normM

log = logging.getLogger(__name__)

# relative size below which a new basis vector is treated as zero
BREAKDOWN_TOL = 1e-14


class GenGKB:
    r'''Generalized Golub-Kahan bidiagonalization.

    After :math:`k` steps

    .. math::
        A Q V_k = U_{k+1} B_k, \qquad A^T R^{-1} U_{k+1} = V_k B_k^T + \alpha_{k+1} v_{k+1} e_{k+1}^T

    with :math:`U_{k+1}^T R^{-1} U_{k+1} = I`, :math:`V_k^T Q V_k = I` and
    :math:`B_k` the :math:`(k+1) \times k` lower bidiagonal matrix.

    The bases are stored in column stores preallocated for ``max_steps``
    steps and read through the views :attr:`U`, :attr:`V`, :attr:`QV` and
    :attr:`B`.

    Parameters
    ----------
    A, Q, R : LinearOperator
        Forward operator, prior covariance and noise covariance. ``R`` must
        implement ``inverse``.
    b : numpy.ndarray
        Flat data vector.
    max_steps : int
        Number of steps to allocate for.
    reorth : bool, optional
        Reorthogonalise new basis vectors against the stored ones.
        Default is False.
    '''

    def __init__(self, A, Q, R, b, max_steps, reorth=False):
        m, n = A.shape
        self.A = A
        self.Q = Q
        self.R = R
        self.reorth = reorth
        self.max_steps = int(max_steps)

        self._U = np.zeros((m, self.max_steps + 1))
        self._V = np.zeros((n, self.max_steps))
        self._QV = np.zeros((n, self.max_steps))
        self._B = np.zeros((self.max_steps + 1, self.max_steps))
        self.k = 0

        self.beta = normM(b, R.inverse)
        self._U[:, 0] = b / self.beta

    @property
    def U(self):
        return self._U[:, :self.k + 1]

    @property
    def V(self):
        return self._V[:, :self.k]

    @property
    def QV(self):
        return self._QV[:, :self.k]

    @property
    def B(self):
        return self._B[:self.k + 1, :self.k]

    def step(self):
        '''Expands the bases by one vector each and ``B`` by one column.'''
        k = self.k
        if k >= self.max_steps:
            raise RuntimeError(f"GenGKB allocated for {self.max_steps} steps only")
        u = self._U[:, k]

        v = self.A.adjoint(self.R.inverse(u))
        reference = np.linalg.norm(v)
        if k > 0:
            v -= self._B[k, k - 1] * self._V[:, k - 1]
            if self.reorth:
                # V is Q-orthonormal, V^T Q v = (QV)^T v
                v -= self._V[:, :k] @ (self._QV[:, :k].T @ v)
        Qv = self.Q.direct(v)
        alpha = np.sqrt(max(np.dot(v, Qv), 0.0))
        if alpha <= BREAKDOWN_TOL * reference or alpha == 0:
            log.warning("GenGKB breakdown of V at step %d: alpha = %e", k + 1, alpha)
            alpha = 0.0
            v[:] = 0.0
            Qv[:] = 0.0
        else:
            v /= alpha
            Qv /= alpha
        self._V[:, k] = v
        self._QV[:, k] = Qv

        u_next = self.A.direct(Qv)
        reference = np.linalg.norm(u_next)
        u_next -= alpha * u
        if self.reorth:
            Rinv_u = self.R.inverse(u_next)
            u_next -= self._U[:, :k + 1] @ (self._U[:, :k + 1].T @ Rinv_u)
        beta = normM(u_next, self.R.inverse)
        if beta <= BREAKDOWN_TOL * reference or beta == 0:
            log.warning("GenGKB breakdown of U at step %d: beta = %e", k + 1, beta)
            beta = 0.0
            u_next[:] = 0.0
        else:
            u_next /= beta
        self._U[:, k + 1] = u_next

        self._B[k, k] = alpha
        self._B[k + 1, k] = beta
        self.k = k + 1
        log.debug("GenGKB step %d: alpha = %.4e, beta = %.4e", self.k, alpha, beta)
        return alpha, beta
