"""Core logic for specsync (stores, sync engine, workflow)."""
