"""
Command line interface for stackgraph.
"""
