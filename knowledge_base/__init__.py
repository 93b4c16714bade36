"""
Knowledge base ingestion service

Crawls admin-configured URLs, splits the retrieved text into chunks,
embeds them and upserts the vectors into a namespaced index, with
per-identity rate limiting in front of every crawl.
"""

__version__ = "1.0.0"
