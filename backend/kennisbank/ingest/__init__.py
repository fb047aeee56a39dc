"""Ingestion: loaders, chunking, embeddings and the pipeline."""
