"""quotetrack - quote lifecycle tracking for a windows & doors installation business.

Tracks sales quotes from draft to signature (or decline), keeps an append-only
event log per quote, and fans out best-effort notifications to the sales team.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
