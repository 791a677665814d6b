"""
AssessMatch - Semantic assessment recommendation engine.

Matches a free-text job description against a catalog of skill assessments:
- Embeds the catalog once with a local or remote embedding backend
- Ranks assessments by cosine similarity to the job description
- Optionally reorders the shortlist with an LLM relevance judge
"""

__version__ = "0.1.0"
