"""Check that a manipulated price is what the feed and the protocol report."""
