from abc import ABC, abstractmethod
from typing import Any

from txguard.core.policy.fee_policy import SubmissionRequest


class Submitter(ABC):
    """Base submitter interface"""

    name: str

    @abstractmethod
    async def submit(self, request: SubmissionRequest) -> Any:
        """
        Submit a request and return its confirmation.

        Implementations raise OperationError subclasses so failures reach
        the queue already tagged with an ErrorKind.
        """
        pass

    async def close(self) -> None:
        """Release any transport resources"""
        return None

    def executor_for(self, request: SubmissionRequest):
        """Zero-argument coroutine function suitable for SequentialQueue.enqueue."""
        async def execute() -> Any:
            return await self.submit(request)

        return execute
