"""Packaged data files (default rule table)."""
