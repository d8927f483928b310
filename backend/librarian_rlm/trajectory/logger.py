"""Trajectory logger for recording research sessions."""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from librarian_rlm.config import get_settings
from librarian_rlm.types import StreamEvent, StreamEventType, TrajectoryStepType

logger = structlog.get_logger()


class TrajectoryLogger:
    """Records every step of a research session.

    Steps are always kept in memory for the active session. When trajectory
    logging is enabled they are also appended to ``<log_dir>/<session>.jsonl``
    as they happen.
    """

    def __init__(self, log_dir: Optional[str] = None, enabled: Optional[bool] = None) -> None:
        """Initialize the trajectory logger.

        Args:
            log_dir: Directory to save trajectory logs (default from settings)
            enabled: Write JSONL files (default from settings)
        """
        settings = get_settings()

        self.log_dir = Path(log_dir or settings.log_dir)
        self.enabled = settings.enable_trajectory_logging if enabled is None else enabled
        if self.enabled:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._sessions: Dict[str, List[Dict[str, Any]]] = {}

        logger.info(
            "trajectory_logger_initialized",
            log_dir=str(self.log_dir),
            enabled=self.enabled,
        )

    def start_session(self, session_id: Optional[str] = None) -> str:
        """Start a new logging session.

        Returns:
            Session ID (generated if not provided)
        """
        session_id = session_id or str(uuid.uuid4())
        self._sessions[session_id] = []
        logger.debug("trajectory_session_started", session_id=session_id)
        return session_id

    def log_step(
        self,
        session_id: str,
        step_type: TrajectoryStepType,
        data: Dict[str, Any],
    ) -> None:
        """Log a single step in the trajectory.

        Args:
            session_id: Session ID
            step_type: Type of step
            data: Step data (varies by type)
        """
        step = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "step_type": step_type.name,
            "session_id": session_id,
            "data": data,
        }
        self._sessions.setdefault(session_id, []).append(step)

        if self.enabled:
            self._write_step(session_id, step)

        logger.debug(
            "trajectory_step_logged",
            session_id=session_id,
            step_type=step_type.name,
        )

    def _write_step(self, session_id: str, step: Dict[str, Any]) -> None:
        try:
            log_file = self.log_dir / f"{session_id}.jsonl"
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(step, default=str) + "\n")
        except OSError as e:
            logger.error(
                "failed_to_write_trajectory_step",
                session_id=session_id,
                error=str(e),
            )

    def end_session(self, session_id: str, final_data: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """End a logging session.

        Args:
            session_id: Session ID
            final_data: Optional final result, logged as a FINAL_ANSWER step

        Returns:
            The session's complete list of steps
        """
        if final_data:
            self.log_step(session_id, TrajectoryStepType.FINAL_ANSWER, final_data)

        steps = self._sessions.pop(session_id, [])
        logger.info(
            "trajectory_session_ended",
            session_id=session_id,
            steps=len(steps),
        )
        return steps

    def get_trajectory(self, session_id: str) -> List[Dict[str, Any]]:
        """Steps recorded so far for an active session, else read back from disk."""
        if session_id in self._sessions:
            return list(self._sessions[session_id])

        log_file = self.log_dir / f"{session_id}.jsonl"
        if not log_file.exists():
            return []

        trajectory = []
        with open(log_file, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    trajectory.append(json.loads(line))
        return trajectory

    def create_stream_event(
        self,
        event_type: StreamEventType,
        session_id: str,
        data: Dict[str, Any],
    ) -> StreamEvent:
        """Create a streaming event."""
        return StreamEvent(
            type=event_type,
            session_id=session_id,
            data=data,
        )
