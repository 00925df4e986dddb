"""
Core services: chunking, embedding, storage, retrieval and formatting.
"""
