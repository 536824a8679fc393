"""Wire protocol, transport and session lifecycle for the realtime dialog service."""
