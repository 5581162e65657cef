"""Slurm Inspector.

Polls the Slurm status tools on a fixed interval, parses their tabular
output into node, partition and job records, and keeps a consistent,
continuously refreshed snapshot of cluster state for concurrent readers.
"""

__version__ = "0.1.0"
