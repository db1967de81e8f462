"""
notex: reorganize, enhance and cross-link a tree of notes with an LLM.
"""

__version__ = "0.1.0"
