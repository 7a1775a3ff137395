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

from typing import Callable, Union

import numpy as np

from genhybr.optimisation.operators import LinearOperator


def normM(v: np.ndarray, M: Union[LinearOperator, np.ndarray, Callable]) -> float:
    r"""Weighted norm :math:`\sqrt{v^T M v}`.

    Parameters
    ----------
    v : numpy.ndarray
        Vector whose norm is computed.
    M : numpy.ndarray, scipy.sparse matrix, LinearOperator or callable
        The weighting. Matrices are applied with a product, a
        :class:`LinearOperator` with ``direct`` and a callable by calling it,
        e.g. ``R.inverse`` for the :math:`R^{-1}`-norm.

    Returns
    -------
    float
    """
    v = np.asarray(v).reshape(-1)
    if isinstance(M, LinearOperator):
        Mv = M.direct(v)
    elif callable(M):
        Mv = M(v)
    else:
        Mv = M @ v
    return float(np.sqrt(np.dot(v, np.asarray(Mv).reshape(-1))))
