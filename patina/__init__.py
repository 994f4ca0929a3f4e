"""Core package for procedural weathering simulations."""
from .errors import PatinaError

__version__ = "0.3.0"

__all__ = ["PatinaError", "__version__"]
