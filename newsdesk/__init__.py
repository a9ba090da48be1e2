"""Newsdesk: scheduled market-news ingestion and AI analysis."""

__version__ = "0.3.0"
