"""
External transform hook.

Lets an operator pipe a source's raw feed text through a command before
it is normalized (for example `sed` or a small script fixing a broken feed).
"""
import logging
import subprocess

logger = logging.getLogger(__name__)


class TransformError(Exception):
    """Raised when a transform command cannot be used."""

    def __init__(self, message: str, command: str = None):
        super().__init__(message)
        self.command = command


def run_transform(command: str, text: str, timeout: int = 60) -> str:
    """
    Pipe text through an external command.

    The command line is split on whitespace: the first token is the
    executable, the rest are its arguments. No shell is involved.

    Args:
        command: Command line to run
        text: Text written to the command's standard input
        timeout: Seconds to wait for the command

    Returns:
        The command's standard output

    Raises:
        TransformError: If the command is empty, cannot be launched, times
            out or exits non-zero
    """
    args = command.split()
    if not args:
        raise TransformError("Transform command is empty", command=command)

    logger.info(f"Running transform command: {args[0]}")

    try:
        result = subprocess.run(
            args,
            input=text,
            capture_output=True,
            text=True,
            encoding="utf-8",
            timeout=timeout,
            check=False,
        )
    except (OSError, ValueError) as e:
        raise TransformError(f"Error launching '{args[0]}': {e}", command=command) from e
    except subprocess.TimeoutExpired as e:
        raise TransformError(f"'{args[0]}' timed out after {timeout}s", command=command) from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise TransformError(
            f"'{args[0]}' exited with status {result.returncode}: {stderr[:200]}",
            command=command,
        )

    return result.stdout
