"""Provider and metadata API clients."""
