"""
Knowledge Companion
===================

Retrieval-augmented answering core for the multi-tenant knowledge companion:
chunking, embeddings, tenant-scoped vector search, reranking, feedback-driven
personalization and grounded answers with citations.
"""

__version__ = "0.4.0"
