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
from typing import Callable, Union

import numpy as np
from tqdm.auto import tqdm

log = logging.getLogger(__name__)


class Callback(ABC):
    '''Base callback, called once per iteration with the running algorithm.

    Subclasses implement ``__call__``. ``finish`` is called once when
    :meth:`Algorithm.run` returns. Raising ``StopIteration`` from a
    callback ends the run early.

    Parameters
    ----------
    verbose : int, optional
        Verbosity of the callback, 0 silences it. Default is 1.
    '''

    def __init__(self, verbose: int = 1):
        self.verbose = verbose

    @abstractmethod
    def __call__(self, algorithm):
        pass

    def finish(self, algorithm):
        pass


class _FunctionCallback(Callback):
    '''Wraps a plain callable ``f(algorithm)``.'''

    def __init__(self, function):
        super().__init__()
        self.function = function

    def __call__(self, algorithm):
        self.function(algorithm)


def as_callback(callback: Union["Callback", Callable]) -> "Callback":
    '''Returns ``callback`` as a :class:`Callback`, wrapping plain callables.'''
    if isinstance(callback, Callback):
        return callback
    if callable(callback):
        return _FunctionCallback(callback)
    raise TypeError(f"Callbacks must be callable. Got {type(callback).__name__}")


def _status(algorithm):
    status = {"loss": algorithm.get_last_loss()}
    regalpha = getattr(algorithm, "regalpha", None)
    if regalpha is not None:
        status["regalpha"] = regalpha
    return status


class ProgressCallback(Callback):
    '''Progress bar over the maximum number of iterations, using :mod:`tqdm`.

    Parameters
    ----------
    tqdm_class : callable, optional
        Progress bar class. Default is ``tqdm.auto.tqdm``.
    **tqdm_kwargs
        Passed to ``tqdm_class``.
    '''

    def __init__(self, verbose: int = 1, tqdm_class=tqdm, **tqdm_kwargs):
        super().__init__(verbose=verbose)
        self.tqdm_class = tqdm_class
        self.tqdm_kwargs = tqdm_kwargs
        self._pbar = None

    def __call__(self, algorithm):
        if self._pbar is None:
            tqdm_kwargs = self.tqdm_kwargs.copy()
            tqdm_kwargs.setdefault("total", algorithm.max_iteration)
            tqdm_kwargs.setdefault("disable", not self.verbose)
            tqdm_kwargs.setdefault("initial", max(algorithm.iteration - 1, 0))
            tqdm_kwargs.setdefault("desc", algorithm.__class__.__name__)
            self._pbar = self.tqdm_class(**tqdm_kwargs)
        self._pbar.update(algorithm.iteration - self._pbar.n)
        self._pbar.set_postfix(_status(algorithm), refresh=False)

    def finish(self, algorithm):
        if self._pbar is not None:
            self._pbar.close()
            self._pbar = None


class TextProgressCallback(Callback):
    '''Logs the iteration, loss and regularisation parameter at ``info`` level.

    Parameters
    ----------
    miniters : int, optional
        Log every ``miniters`` iterations. Default is 1.
    '''

    def __init__(self, verbose: int = 1, miniters: int = 1):
        super().__init__(verbose=verbose)
        self.miniters = int(miniters)

    def __call__(self, algorithm):
        if not self.verbose or algorithm.iteration % self.miniters:
            return
        status = _status(algorithm)
        log.info("%s iteration %d/%d: loss = %.4e, regalpha = %.4e",
                 algorithm.__class__.__name__, algorithm.iteration,
                 algorithm.max_iteration, status["loss"],
                 status.get("regalpha", np.nan))
