"""Upstream collaborators: capacity API and SPARQL translation sources."""
