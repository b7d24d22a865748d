"""Concrete adapters for the interfaces in :mod:`bookresolver.interfaces`."""
