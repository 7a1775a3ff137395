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

from .norms import normM
from .noise import estimate_noise_level
from .HybridOptions import HybridOptions
from .HybridStopping import StopFlag, StopDecision, WarningWindow, GCVStoppingRule
from .HybridUpdateReg import (
    TikhonovSolver,
    TSVDSolver,
    INNER_SOLVERS,
    get_inner_solver,
    findomega,
    GCVstopfun,
)
from .HybridOutput import HybridOutput
from .callbacks import Callback, ProgressCallback, TextProgressCallback
