"""Inbound command dispatch.

Turns a push message ({"command": ..., other keys = parameters}) into a
queued task. Messages without a command are dropped, as are file transfer
messages (upload_file, upload_audio_recording, download_file) missing
their path parameter: such a task could never succeed, so it is never
scheduled. Unknown commands are scheduled anyway and fail when executed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from deviceagent.agent.tasks.handlers import DOWNLOAD_FILE, UPLOAD_AUDIO_RECORDING, UPLOAD_FILE

if TYPE_CHECKING:
    from deviceagent.agent.tasks.engine import TaskEngine
    from deviceagent.agent.tasks.types import Task

logger = logging.getLogger(__name__)

COMMAND_KEY = "command"

# Parameter a command cannot run without
REQUIRED_PARAMS = {
    UPLOAD_FILE: "filePath",
    UPLOAD_AUDIO_RECORDING: "filePath",
    DOWNLOAD_FILE: "serverFilePath",
}


class CommandDispatcher:
    """Validates push messages and schedules them on the task engine."""

    def __init__(self, engine: TaskEngine) -> None:
        self._engine = engine

    def dispatch(self, message: Mapping[str, Any]) -> Task | None:
        """Schedule the command carried by a push message.

        Args:
            message: Decoded push message.

        Returns:
            The scheduled task, or None if the message was dropped.
        """
        command = message.get(COMMAND_KEY)
        if not isinstance(command, str) or not command.strip():
            logger.warning("Received message without a '%s' key, dropping it.", COMMAND_KEY)
            return None
        command = command.strip()

        params = {
            str(key): "" if value is None else str(value)
            for key, value in message.items()
            if key != COMMAND_KEY
        }

        required = REQUIRED_PARAMS.get(command)
        if required is not None and not params.get(required):
            logger.warning(
                "Command '%s' received without required '%s'. Dropping it.",
                command,
                required,
            )
            return None

        logger.debug("Received command: '%s'. Scheduling task.", command)
        return self._engine.enqueue(command, params)
