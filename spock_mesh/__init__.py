"""
spock_mesh: full-mesh Spock logical replication reconciler.
"""

__version__ = "1.0.0"
