"""When the next reconciliation pass for a Fleet should run."""
from dataclasses import dataclass
from typing import Optional

from .config import settings


@dataclass(frozen=True)
class RequeuePolicy:
    on_success: float = settings.REQUEUE_AFTER_SUCCESS
    on_failure: float = settings.REQUEUE_AFTER_FAILURE

    def after(self, error: Optional[BaseException] = None) -> float:
        """Seconds until the next pass, given the outcome of this one."""
        return self.on_failure if error is not None else self.on_success
