"""Concrete adapters for the interfaces in :mod:`drive_knowledge.interfaces`."""
