"""Song search.

Contains:
- ranker: Hybrid search (lexical substring lane + vector similarity lane)
"""
