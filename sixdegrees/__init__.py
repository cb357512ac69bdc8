"""
Six Degrees - link finder for hashtag and user graphs

This package contains the search engine that connects two entities through a
rate-limited remote lookup API using a budgeted bidirectional search.
"""

__version__ = "1.0.0"
