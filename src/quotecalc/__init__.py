"""Quote pricing engine for painting contractors."""

from .catalog import Catalog
from .engine import QuoteEngine
from .errors import (
    ComputationError,
    ConfigurationError,
    FormulaError,
    QuoteError,
    ValidationError,
)
from .formula import parse_formula
from .gbb import merge_rate_table
from .loader import load_pricing_data
from .models import QuoteRequest, QuoteResponse, QuoteResult
from .serialization import parse_request, response_to_dict

__version__ = "0.1.0"

__all__ = [
    "Catalog",
    "QuoteEngine",
    "QuoteError",
    "ValidationError",
    "ConfigurationError",
    "FormulaError",
    "ComputationError",
    "QuoteRequest",
    "QuoteResponse",
    "QuoteResult",
    "load_pricing_data",
    "merge_rate_table",
    "parse_formula",
    "parse_request",
    "response_to_dict",
]
