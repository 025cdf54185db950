"""Network listeners that feed resolver log datagrams into the ingestion core."""
