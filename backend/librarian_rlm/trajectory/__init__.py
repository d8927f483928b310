"""Trajectory module for recording research sessions."""

from librarian_rlm.trajectory.logger import TrajectoryLogger

__all__ = [
    "TrajectoryLogger",
]
