"""
Silo client data layer: the shared cache and the query/prefetch helpers
built on it.
"""
