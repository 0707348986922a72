"""Concrete identity, generation, and record store collaborators."""
