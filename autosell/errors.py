"""
Errors raised across the auto-sell engine.

Every error carries the HTTP status the control API answers with, so the
API layer can map any AutoSellError without knowing the subclass.
"""

from typing import Dict, Optional


class AutoSellError(Exception):
    """Base class for engine errors"""
    status_code = 500


class ConfigError(AutoSellError):
    """Invalid configuration or credentials on start"""
    status_code = 400


class EngineStateError(AutoSellError):
    """Lifecycle request that does not fit the current state"""
    status_code = 400


class SourceError(AutoSellError):
    """One market-data source failed (caught by the waterfall)"""


class SwapError(AutoSellError):
    """Quote or swap-build failure for one account"""


class BroadcastError(AutoSellError):
    """Every broadcast channel failed or timed out"""

    def __init__(self, message: str, reasons: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.reasons = reasons or {}


class WebhookAuthError(AutoSellError):
    """Webhook request without a valid shared secret"""
    status_code = 401
