"""
Chronicle - Persistent storage of projects and their story state.
"""

from chronicle_lib.persistence.database import StoryStore

__all__ = ["StoryStore"]
