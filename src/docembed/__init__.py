"""docembed — document ingestion and embedding pipeline."""
