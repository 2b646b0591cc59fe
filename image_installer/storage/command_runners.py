"""External command execution for installer tools.

Every tool invocation blocks until the process exits. Exit statuses are
returned to the caller, which decides how to classify them; processes that
cannot be launched at all raise ToolInvocationError.
"""

from __future__ import annotations

import os
import subprocess
from typing import Optional

from image_installer.logging import EventLogger, LoggerFactory

from .exceptions import ToolFailureError, ToolInvocationError


log = LoggerFactory.for_storage()


class ProcessRunner:
    """Synchronous runner for external tools."""

    def run(self, command: str, *args: str, input_text: Optional[str] = None) -> int:
        """Run ``command`` with ``args`` and return its exit status.

        Raises:
            ToolInvocationError: If the process could not be started or was
                killed by a signal
        """
        argv = [str(command), *(str(arg) for arg in args)]
        EventLogger.log_tool_invocation(log, argv)
        try:
            result = subprocess.run(
                argv,
                input=input_text,
                text=True,
                encoding="utf-8",
                errors="replace",
                capture_output=True,
            )
        except OSError as error:
            log.error("Error while trying to execute '{}': {}", command, error)
            raise ToolInvocationError(command, str(error)) from error

        if result.stdout:
            EventLogger.log_tool_output(log, "stdout", result.stdout)
        if result.stderr:
            EventLogger.log_tool_output(log, "stderr", result.stderr)

        if result.returncode < 0:
            log.error("'{}' was terminated by signal {}", command, -result.returncode)
            raise ToolInvocationError(command, f"terminated by signal {-result.returncode}")

        EventLogger.log_tool_result(log, argv, result.returncode)
        return result.returncode

    def run_checked(self, command: str, *args: str, input_text: Optional[str] = None) -> None:
        """Run a command and raise ToolFailureError on a non-zero exit status."""
        returncode = self.run(command, *args, input_text=input_text)
        if returncode != 0:
            name = os.path.basename(str(command))
            log.error("Error while running {}: {}", name, returncode)
            raise ToolFailureError(name, returncode)

    def sync(self) -> None:
        """Flush filesystem buffers to the devices."""
        log.debug("Syncing filesystems")
        os.sync()
