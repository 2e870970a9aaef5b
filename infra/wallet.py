"""Wallet adapters. Custody and signing live outside this process."""

import logging
from typing import Optional

from core.exceptions import ExecutionFailed

logger = logging.getLogger(__name__)


class ReadOnlyWallet:
    """Public identity only; every live submission is refused."""

    def __init__(self, public_key: Optional[str] = None):
        self._public_key = public_key or None
        if self._public_key is None:
            logger.warning("No wallet public key configured")

    def public_identity(self) -> Optional[str]:
        return self._public_key

    def can_sign(self) -> bool:
        return False

    def sign_and_send(self, transaction: str) -> str:
        raise ExecutionFailed("Read-only wallet cannot sign transactions")
