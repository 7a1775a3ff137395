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
import pywt

log = logging.getLogger(__name__)

# median absolute deviation scale used by the wavelet noise estimate
MAD_SCALE = 0.67


def estimate_noise_level(data: np.ndarray) -> float:
    r"""Estimates the noise standard deviation from the finest Haar wavelet details.

    .. math::
        \sigma \approx \frac{\mathrm{median}(|c_D|)}{0.67}

    where :math:`c_D` are the finest-level detail coefficients of a ``db1``
    transform: ``pywt.dwt`` for 1-D data and the diagonal details of
    ``pywt.dwt2`` for 2-D data.

    Parameters
    ----------
    data : numpy.ndarray
        1-D or 2-D data.

    Returns
    -------
    float
    """
    data = np.asarray(data, dtype=float)
    if data.ndim == 2 and min(data.shape) == 1:
        data = data.reshape(-1)
    if data.ndim == 1:
        _, cD = pywt.dwt(data, "db1")
    elif data.ndim == 2:
        _, (_, _, cD) = pywt.dwt2(data, "db1")
    else:
        raise ValueError(f"Noise estimation supports 1-D and 2-D data. Got {data.ndim} dimensions")
    noise_level = float(np.median(np.abs(cD)) / MAD_SCALE)
    log.info("Estimated noise level: %e", noise_level)
    return noise_level
