"""
Y scenarios: hypothetical job changes and delays layered over production.

``engine`` replays changes over frozen production snapshots without touching
the database; ``service`` records changes and commits or discards scenarios.
"""
