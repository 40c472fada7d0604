"""API routes for the note pipeline."""

from clipnote.api import diagnostics_routes, models_routes, routes

__all__ = ["routes", "models_routes", "diagnostics_routes"]
