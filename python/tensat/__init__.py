"""
Package for verifying and optimizing tensor rewrite rules with equality saturation.
"""

from . import axioms, config  # noqa: F401
from .analysis import *
from .config import Budget as Budget
from .cost import *
from .declarations import *
from .egraph import *
from .extract import *
from .optimize import *
from .parse import *
from .pattern import *
from .pretty import *
from .rewrite import *
from .runner import *
from .verify import *
