"""
Execution stations: race-free station numbers and shared kit progress.
"""
