"""cachegate -- resilient response caching in front of rate-limited analysis providers.

This package wraps an expensive, fallible remote call with a
content-addressed, version- and TTL-aware cache, a fixed-window admission
limiter, bounded retry with exponential backoff, and a timeout guard.
The pieces are composed by :class:`~cachegate.coordinator.RequestCoordinator`
into a single request path with a fail-open fallback.

Typical usage::

    from cachegate import AnalysisRequest, RequestCoordinator
    from cachegate.models import CoreConfig

    coordinator = RequestCoordinator.from_config(CoreConfig(), remote_call)
    outcome = await coordinator.execute(
        AnalysisRequest(namespace="claude", content="Please rename this variable")
    )

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration loading and environment overrides.
    keys: Content-addressed cache key derivation.
    cache: Cache store and persistence backends.
    limiter: Fixed-window rate limiter.
    resilience: Retry executor and timeout guard.
    coordinator: The composed request path.
    exceptions: Exception hierarchy with exit-code mapping.
"""

from cachegate.coordinator import RequestCoordinator
from cachegate.models import AnalysisRequest, RequestOutcome

__version__ = "0.1.0"

__all__ = ["AnalysisRequest", "RequestCoordinator", "RequestOutcome", "__version__"]
