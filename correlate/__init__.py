"""
Correlate package: regroup collected activity per repository and turn it into suggested time entries.
"""

from .aggregator import aggregate, flatten_results
from .suggest import synthesize, flag_logged

__all__ = ["aggregate", "flatten_results", "synthesize", "flag_logged"]
