"""
Bundled stack programs.
"""
