"""Video asset module: ingestion, listing, deletion and metadata extraction."""
