"""
Utility helpers.

- deps: FastAPI auth/context dependencies
- masking: log-safe rendering of identifiers
- redis_pool: shared async Redis pool
"""

from .masking import mask_value, mask_token, mask_email

__all__ = ["mask_value", "mask_token", "mask_email"]
