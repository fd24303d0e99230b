"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- HTML segmentation into titled sections
- Text chunking with overlap
- Chroma and flat-file storage
- Retrieval, context assembly and answering
"""
