"""External fitness provider clients.

Available providers:
    GoogleTokenProvider — Google OAuth2 refresh-token exchange
    GoogleFitFetcher    — Google Fit aggregate step counts
"""

from steptrack.steps.providers.google_fit import GoogleFitFetcher
from steptrack.steps.providers.google_oauth import GoogleTokenProvider

__all__ = [
    "GoogleFitFetcher",
    "GoogleTokenProvider",
]
