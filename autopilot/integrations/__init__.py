"""Clients for feeds and external content services."""
