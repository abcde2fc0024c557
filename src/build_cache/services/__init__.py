"""Object store adapters for build-cache."""
