"""build-app-with: scaffolding CLI and its secure execution layer."""

__version__ = "0.1.0"
