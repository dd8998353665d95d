"""Command-line agents built on the tooldesk conversation loop."""
