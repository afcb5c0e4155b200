"""
Sources — things that turn a track reference into something to play.

One provider per reference type; the resolver asks each provider in order
whether it handles a reference and lets the first taker resolve it.

Current providers:
  local.py  — local audio files (plain paths, file:// URLs)
  http.py   — http(s) audio files and Icecast/Shoutcast streams
"""

import logging

from .base import ResolvedTrack, TrackProvider

log = logging.getLogger(__name__)


class ProviderResolver:
    """Maps a track reference to the provider for its type."""

    def __init__(self, providers: list[TrackProvider]):
        self.providers = list(providers)

    def get_instance(self, ref: str) -> TrackProvider | None:
        for provider in self.providers:
            if provider.handles(ref):
                return provider
        return None

    async def resolve(self, ref: str) -> ResolvedTrack | None:
        """Resolve *ref*.  None when no provider handles it or it has no stream."""
        provider = self.get_instance(ref)
        if provider is None:
            log.warning("No provider for %s", ref)
            return None
        log.debug("Resolving %s via %s", ref, provider.id)
        return await provider.resolve(ref)

    async def close(self):
        for provider in self.providers:
            await provider.close()


def create_resolver(data_dir: str | None = None) -> ProviderResolver:
    """Build the resolver with every shipped provider."""
    from .http import HttpStreamProvider
    from .local import LocalFileProvider

    return ProviderResolver([HttpStreamProvider(), LocalFileProvider(root=data_dir)])
