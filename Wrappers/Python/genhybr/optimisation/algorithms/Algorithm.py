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

from genhybr.optimisation.utilities.callbacks import as_callback

log = logging.getLogger(__name__)


class Algorithm:
    r'''Base class for iterative algorithms.

    An algorithm is an iterator: each call to ``next`` performs one
    :meth:`update` followed by :meth:`update_objective`. Either of them may
    raise ``StopIteration`` to end the iterations early.

    Subclasses implement :meth:`set_up`, :meth:`update` and
    :meth:`update_objective`, and set ``self.configured = True`` once set up.

    Parameters
    ----------
    max_iteration : int, optional
        Maximum number of iterations. Default is 0, i.e. set by the subclass.
    '''

    def __init__(self, max_iteration=0):
        self.iteration = 0
        self.max_iteration = max_iteration
        self.loss = []
        self.configured = False
        self.x = None

    def set_up(self, *args, **kwargs):
        '''Set up the algorithm.'''
        raise NotImplementedError

    def update(self):
        '''A single iteration of the algorithm.'''
        raise NotImplementedError

    def update_objective(self):
        '''Appends the current objective value to ``loss``.'''
        raise NotImplementedError

    def should_stop(self):
        '''True once the maximum number of iterations is reached.'''
        return self.iteration >= self.max_iteration

    def __iter__(self):
        return self

    def __next__(self):
        if self.should_stop():
            raise StopIteration()
        if not self.configured:
            raise ValueError(f"{self.__class__.__name__} not configured")
        self.update()
        self.iteration += 1
        self.update_objective()
        return self.iteration

    def get_output(self):
        '''Returns the current solution.'''
        return self.x

    def get_last_loss(self):
        '''Returns the last stored objective value, ``nan`` before the first iteration.'''
        return self.loss[-1] if self.loss else np.nan

    @property
    def objective(self):
        return self.loss

    def run(self, iterations=None, callbacks=None):
        '''Runs the algorithm.

        Parameters
        ----------
        iterations : int, optional
            Number of iterations to run. Default is up to ``max_iteration``.
        callbacks : list of callable, optional
            Called after every iteration with this algorithm. Plain callables
            are wrapped in a :class:`~genhybr.optimisation.utilities.callbacks.Callback`.
        '''
        if iterations is None:
            iterations = self.max_iteration - self.iteration
        callbacks = [as_callback(c) for c in (callbacks or [])]

        log.debug("%s running %d iterations", self.__class__.__name__, iterations)
        try:
            for _ in zip(range(iterations), self):
                try:
                    for callback in callbacks:
                        callback(self)
                except StopIteration:
                    log.info("%s stopped by callback at iteration %d",
                             self.__class__.__name__, self.iteration)
                    break
        finally:
            for callback in callbacks:
                callback.finish(self)
        self.finalise()

    def finalise(self):
        '''Called once when :meth:`run` returns.'''
        pass
