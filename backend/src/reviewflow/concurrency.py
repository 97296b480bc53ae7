"""
Optimistic concurrency helpers.

Every status transition reads a record, validates it, and writes it back
conditioned on the version it read. A lost race raises VersionConflict and
the whole read-validate-write is run again.
"""
from typing import Callable, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_random

from .config import config
from .errors import PersistenceFailure, VersionConflict
from .logging import logger

T = TypeVar('T')


def with_cas_retry(operation: Callable[[], T], attempts: int = None) -> T:
    """
    Run a read-validate-write operation until its conditional write wins.

    Args:
        operation: Zero-argument callable performing one full attempt
        attempts: Max attempts (defaults to CAS_MAX_ATTEMPTS)

    Returns:
        Whatever the operation returns

    Raises:
        PersistenceFailure: if every attempt lost the race
    """
    retryer = Retrying(
        retry=retry_if_exception_type(VersionConflict),
        stop=stop_after_attempt(attempts or config.CAS_MAX_ATTEMPTS),
        wait=wait_random(min=0, max=0.05),
        reraise=True,
    )
    try:
        return retryer(operation)
    except VersionConflict as e:
        logger.warning(f"Compare-and-set gave up after retries: {e}")
        raise PersistenceFailure(f"Concurrent update kept conflicting: {e}") from e
