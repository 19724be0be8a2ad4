"""Metadata provider clients."""
