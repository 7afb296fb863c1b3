"""
PyFormula: R-style model formulas, design matrices, fitting and prediction.

Copyright (C) 2024 SGCX
Licensed under GPL-3.0
"""

__version__ = "0.1.0"

# Import main user-facing API
from .lm import lm
from .glm import glm
from .model import FittedModel, ModelKind
from .prediction import predict, PredictionEngine, PredictionRequest, PredictionResult
from .anova import anova, ModelComparer, ComparisonResult
from .grouped import fit_grouped, GroupedFit

# Formula and design layer
from .formula import Formula, FormulaParser, TermExpander, build_formula
from ._core import CategoricalEncoder, Factor, Gaussian, Binomial, Poisson
from ._core.design import DesignInfo, DesignMatrix, DesignMatrixBuilder

from .config import FitControl, configure, get_config, reset_config
from ._logging import get_logger, setup_logging
from .exceptions import *  # noqa: F401,F403
from . import exceptions

# Import backend utilities (for advanced users)
from ._backends import get_backend, list_available_backends

__all__ = [
    'lm',
    'glm',
    'predict',
    'anova',
    'fit_grouped',
    'FittedModel',
    'ModelKind',
    'PredictionEngine',
    'PredictionRequest',
    'PredictionResult',
    'ModelComparer',
    'ComparisonResult',
    'GroupedFit',
    'Formula',
    'FormulaParser',
    'TermExpander',
    'build_formula',
    'CategoricalEncoder',
    'Factor',
    'DesignInfo',
    'DesignMatrix',
    'DesignMatrixBuilder',
    'Gaussian',
    'Binomial',
    'Poisson',
    'FitControl',
    'configure',
    'get_config',
    'reset_config',
    'get_logger',
    'setup_logging',
    'get_backend',
    'list_available_backends',
] + exceptions.__all__
