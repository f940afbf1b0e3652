"""
Long Video Generation Engine.

Splits a requested duration into fixed-length segments, drives each segment
through image -> video -> narration generation in credential-isolated batches,
and merges the results with a tiered fallback.
"""

__version__ = "1.0.0"
