"""CLI module for safehost."""
