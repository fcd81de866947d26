"""Chain ingestion: RPC client, ERC20 decoding, listeners and their manager."""
