"""
Services package for the playlist guide service

This package contains the feed parsers, the guide cache and the query logic.
Modules are imported directly (e.g. `from app.services.guide_cache_service import GuideCache`).
"""
