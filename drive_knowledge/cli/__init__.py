"""Command-line tools for drive-knowledge.

- ``python -m drive_knowledge.cli`` -- add, refresh, update, delete, list,
  search and share knowledge sources; authorize a Microsoft account.
"""
