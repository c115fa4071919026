"""Removal of sandbox environments left behind by a killed relay."""
import asyncio

from loguru import logger

from hookrelay.sandbox.docker import MANAGED_LABEL, run_docker


_TEARDOWN_TIMEOUT = 10.0


async def _docker_with_timeout(*args: str) -> tuple[int, str, str] | None:
    """Run a docker command, returning None if it does not finish in time."""
    try:
        return await asyncio.wait_for(run_docker(*args), timeout=_TEARDOWN_TIMEOUT)
    except TimeoutError:
        logger.warning("Docker command timed out", command=args[0], timeout=_TEARDOWN_TIMEOUT)
        return None


async def teardown_orphaned_environments() -> int:
    """Remove every container carrying the relay's management label.

    Environments are normally removed by the relay itself; this sweep is for
    the ones a SIGKILL or a crash left running. Docker being unavailable is
    not an error.

    Returns:
        Number of containers removed.
    """
    try:
        listed = await _docker_with_timeout("ps", "-aq", "--filter", f"label={MANAGED_LABEL}")
        if listed is None:
            return 0
        returncode, stdout, stderr = listed
        if returncode != 0:
            logger.warning("Failed to list relay environments", error=stderr)
            return 0

        container_ids = stdout.split()
        if not container_ids:
            logger.info("No relay environments to clean up")
            return 0

        logger.info("Removing relay environments", count=len(container_ids))
        removed = await _docker_with_timeout("rm", "-f", *container_ids)
    except OSError as exc:
        logger.warning("Docker not available, skipping cleanup", error=str(exc))
        return 0

    if removed is None:
        return 0
    returncode, _, stderr = removed
    if returncode != 0:
        logger.warning("Failed to remove some environments", error=stderr)
        return 0
    logger.info("Relay environments removed", count=len(container_ids))
    return len(container_ids)
