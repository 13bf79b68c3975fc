"""Vector store module for the documentation RAG pipeline.

Provides structure-aware chunking, batched OpenAI embedding generation,
and ChromaDB storage scoped per repository.
"""
