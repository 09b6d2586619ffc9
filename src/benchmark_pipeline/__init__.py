"""
Game Benchmark Pipeline.

Continuously ingests finished games from rate-limited providers, scores one
position per game with an engine-based baseline and a move-pattern
challenger, and promotes the challenger once it beats the baseline by a
significant margin. Two pools with different depth and throughput run
side by side.
"""

__version__ = "0.1.0"
