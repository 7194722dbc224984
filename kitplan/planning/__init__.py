"""
Planning master data: shift definitions and production kitting jobs edited
directly, outside any scenario.
"""
