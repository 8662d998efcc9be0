"""
schemashift

Schema migrations for MySQL driven by entity schema descriptions:
introspection, rename-aware diffing, generated reversible migrations,
and locked, transactional execution with backups.
"""

__version__ = "0.1.0"
