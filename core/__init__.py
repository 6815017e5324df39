"""Core module - settings and observability shared by every layer.

Domain logic lives in reconciliation/, coding_engine/ and payload/;
upstream access lives in connectors/.
"""

__version__ = "1.0.0"
