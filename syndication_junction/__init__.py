"""
Syndication Junction: merges RSS and Atom feeds into one RSS feed.
"""
__version__ = "0.1.0"
