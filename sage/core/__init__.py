"""Ambient infrastructure shared by every Sage component."""
