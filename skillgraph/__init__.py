"""Skill Graph Engine.

Semantic relationship engine for a catalog of published skill artifacts:
embedding storage, KNN similarity graphs, Louvain community detection,
topology export and hybrid lexical/semantic search.
"""

__version__ = "1.0.0"
