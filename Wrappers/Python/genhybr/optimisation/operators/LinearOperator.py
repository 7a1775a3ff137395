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

import numpy as np
import scipy.linalg
import scipy.sparse
import scipy.sparse.linalg

log = logging.getLogger(__name__)


class LinearOperator(ABC):
    r"""Abstract linear operator :math:`A: X \rightarrow Y` acting on flat vectors.

    Subclasses implement ``direct`` (:math:`Ax`) and ``adjoint`` (:math:`A^T y`).
    Covariance operators that must be inverted, such as the noise covariance
    :math:`R`, also implement ``inverse`` (:math:`R^{-1} y`).

    Parameters
    ----------
    domain_shape : tuple of int
        Shape of the elements of the domain. Vectors are handled flat; the
        shape is only used to reshape the final solution (e.g. images).
    range_shape : tuple of int, optional
        Shape of the elements of the range, default: same as domain.
    """

    def __init__(self, domain_shape, range_shape=None):
        self.domain_shape = _as_shape(domain_shape)
        if range_shape is None:
            range_shape = self.domain_shape
        self.range_shape = _as_shape(range_shape)

    @property
    def shape(self):
        """Matrix shape ``(m, n)`` of the operator."""
        return int(np.prod(self.range_shape)), int(np.prod(self.domain_shape))

    @abstractmethod
    def direct(self, x, out=None):
        """Returns :math:`Ax`."""
        pass

    @abstractmethod
    def adjoint(self, x, out=None):
        """Returns :math:`A^T x`."""
        pass

    def inverse(self, x, out=None):
        """Returns :math:`A^{-1} x`. Only covariance-type operators implement it."""
        raise NotImplementedError(
            f"{self.__class__.__name__} does not implement an inverse."
        )

    def _fill(self, result, out):
        result = np.asarray(result).reshape(-1)
        if out is None:
            return np.array(result, dtype=float)
        out[...] = result
        return out

    def __repr__(self):
        return f"{self.__class__.__name__}(shape={self.shape})"


class MatrixOperator(LinearOperator):
    """Linear operator backed by a dense ``numpy`` array or a ``scipy.sparse`` matrix.

    The inverse, when requested, is computed from an LU factorisation that is
    built on first use and cached.

    Parameters
    ----------
    matrix : numpy.ndarray or scipy.sparse matrix
        The (m x n) matrix.
    domain_shape : tuple of int, optional
        Shape of the solution, default ``(n,)``.
    range_shape : tuple of int, optional
        Shape of the data, default ``(m,)``.
    """

    def __init__(self, matrix, domain_shape=None, range_shape=None):
        if scipy.sparse.issparse(matrix):
            self.matrix = scipy.sparse.csr_matrix(matrix)
        else:
            self.matrix = np.atleast_2d(np.asarray(matrix))
        if self.matrix.ndim != 2:
            raise ValueError(f"matrix must be 2-dimensional. Got {self.matrix.ndim} dimensions")
        m, n = self.matrix.shape
        if domain_shape is None:
            domain_shape = (n,)
        if range_shape is None:
            range_shape = (m,)
        super().__init__(domain_shape=domain_shape, range_shape=range_shape)
        if self.shape != (m, n):
            raise ValueError(
                f"domain_shape {self.domain_shape} and range_shape {self.range_shape} "
                f"do not match the matrix shape {self.matrix.shape}"
            )
        self._solve = None

    def direct(self, x, out=None):
        return self._fill(self.matrix @ np.asarray(x).reshape(-1), out)

    def adjoint(self, x, out=None):
        return self._fill(self.matrix.T @ np.asarray(x).reshape(-1), out)

    def inverse(self, x, out=None):
        if self._solve is None:
            self._solve = self._factorise()
        return self._fill(self._solve(np.asarray(x).reshape(-1)), out)

    def _factorise(self):
        m, n = self.matrix.shape
        if m != n:
            raise ValueError(f"Only square matrices can be inverted. Got shape {self.matrix.shape}")
        log.debug("Factorising %dx%d matrix for inverse", m, n)
        if scipy.sparse.issparse(self.matrix):
            return scipy.sparse.linalg.factorized(self.matrix.tocsc())
        lu_piv = scipy.linalg.lu_factor(self.matrix)
        return lambda y: scipy.linalg.lu_solve(lu_piv, y)


class FunctionOperator(LinearOperator):
    """Linear operator defined by black-box callables.

    Parameters
    ----------
    direct : callable
        ``x -> A x``.
    adjoint : callable
        ``y -> A^T y``.
    domain_shape : tuple of int
        Shape of the domain.
    range_shape : tuple of int, optional
        Shape of the range, default: same as domain.
    inverse : callable, optional
        ``y -> A^{-1} y``.
    """

    def __init__(self, direct, adjoint, domain_shape, range_shape=None, inverse=None):
        super().__init__(domain_shape=domain_shape, range_shape=range_shape)
        self._direct = direct
        self._adjoint = adjoint
        self._inverse = inverse

    def direct(self, x, out=None):
        return self._fill(self._direct(np.asarray(x).reshape(-1)), out)

    def adjoint(self, x, out=None):
        return self._fill(self._adjoint(np.asarray(x).reshape(-1)), out)

    def inverse(self, x, out=None):
        if self._inverse is None:
            return super().inverse(x, out=out)
        return self._fill(self._inverse(np.asarray(x).reshape(-1)), out)


class IdentityOperator(LinearOperator):
    """Identity operator on vectors of the given shape."""

    def direct(self, x, out=None):
        return self._fill(np.array(x, copy=True), out)

    def adjoint(self, x, out=None):
        return self.direct(x, out=out)

    def inverse(self, x, out=None):
        return self.direct(x, out=out)


class DiagonalOperator(LinearOperator):
    """Diagonal operator, e.g. an uncorrelated noise covariance.

    Parameters
    ----------
    diagonal : array_like
        The diagonal entries. The operator acts on vectors of the same shape.
    """

    def __init__(self, diagonal):
        self.diagonal = np.asarray(diagonal, dtype=float)
        super().__init__(domain_shape=self.diagonal.shape)
        self._flat = self.diagonal.reshape(-1)

    def direct(self, x, out=None):
        return self._fill(self._flat * np.asarray(x).reshape(-1), out)

    def adjoint(self, x, out=None):
        return self.direct(x, out=out)

    def inverse(self, x, out=None):
        if np.any(self._flat == 0):
            raise ZeroDivisionError("DiagonalOperator with zero entries is not invertible.")
        return self._fill(np.asarray(x).reshape(-1) / self._flat, out)


def aslinearoperator(A, domain_shape=None, range_shape=None):
    """Adapts ``A`` to a :class:`LinearOperator`.

    Accepts a :class:`LinearOperator` (returned unchanged), a dense array, a
    ``scipy.sparse`` matrix or a ``scipy.sparse.linalg.LinearOperator``.
    """
    if isinstance(A, LinearOperator):
        return A
    if isinstance(A, scipy.sparse.linalg.LinearOperator):
        m, n = A.shape
        return FunctionOperator(
            A.matvec,
            A.rmatvec,
            domain_shape=domain_shape if domain_shape is not None else (n,),
            range_shape=range_shape if range_shape is not None else (m,),
        )
    if scipy.sparse.issparse(A) or isinstance(A, np.ndarray):
        return MatrixOperator(A, domain_shape=domain_shape, range_shape=range_shape)
    raise TypeError(
        f"Cannot interpret object of type {type(A).__name__} as a linear operator. "
        "Wrap callables in a FunctionOperator."
    )


def _as_shape(shape):
    if np.isscalar(shape):
        return (int(shape),)
    return tuple(int(s) for s in shape)
