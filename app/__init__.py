"""Student identity Verification Center service."""
