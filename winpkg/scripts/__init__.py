"""
Command-line entrypoints for the lifecycle tasks.
"""
