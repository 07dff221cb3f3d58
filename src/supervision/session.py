"""Terminal multiplexer session hook."""

import asyncio
import os

import structlog

from core.config import SessionConfig


logger = structlog.get_logger()


def current_session_name() -> str:
    """Name of the zellij session we're running inside, or empty."""
    return os.environ.get("ZELLIJ_SESSION_NAME", "")


class SessionCloser:
    """Closes the multiplexer tab hosting this supervision run.

    Best effort: every failure is logged and swallowed, the supervision
    result never depends on it.
    """

    def __init__(self, config: SessionConfig):
        self.config = config

    def build_argv(self) -> list[str]:
        session = self.config.session_name
        argv = [self.config.multiplexer]
        # Inside the target session local actions apply to the current tab
        if current_session_name() != session:
            argv.extend(["-s", session])
        argv.extend(["action", "close-tab"])
        return argv

    async def close_tab(self) -> bool:
        """Ask the multiplexer to close the current tab.

        Returns True if the command ran and exited 0.
        """
        argv = self.build_argv()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning("session_close_failed", session=self.config.session_name, error=str(e))
            return False

        try:
            returncode = await asyncio.wait_for(
                process.wait(),
                timeout=self.config.close_timeout_seconds,
            )
        except asyncio.TimeoutError:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
            await process.wait()
            logger.warning(
                "session_close_timed_out",
                session=self.config.session_name,
                timeout=self.config.close_timeout_seconds,
            )
            return False

        if returncode != 0:
            logger.warning(
                "session_close_failed",
                session=self.config.session_name,
                returncode=returncode,
            )
            return False

        logger.info("session_tab_closed", session=self.config.session_name)
        return True
