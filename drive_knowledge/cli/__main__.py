"""Allow ``python -m drive_knowledge.cli`` execution."""

from drive_knowledge.cli.knowledge import main

main()
