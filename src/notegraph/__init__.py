"""
notegraph - relevance and graph intelligence for a linked note corpus.
Notes are scored against each other, linked through an undoable edge
lifecycle, searched semantically or by metadata, and summarized into
budget-constrained context packs for automated agents.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph")
except PackageNotFoundError:
    __version__ = "0.3.0"
