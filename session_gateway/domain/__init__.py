"""Domain layer: session models, registry, exceptions and services."""
