"""Armonyco billing backend."""
