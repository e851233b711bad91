"""Publish a directory tree as a verifiable change log and mirror it lazily."""
