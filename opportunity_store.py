# opportunity_store.py

import copy
import threading
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from config.logging_config import get_logger
from data_models import ExecutionResult, ExecutionStatus, Opportunity, OpportunityStatus
from utils import ValidationError, utcnow


class OpportunityStore:
    """In-memory CRUD over detected opportunities. Owns opportunity expiry."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.log = get_logger(__name__)
        self._clock = clock
        self._opportunities: Dict[str, Opportunity] = {}
        self._lock = threading.RLock()

    def add(self, opportunity: Union[Opportunity, Mapping[str, Any]]) -> Opportunity:
        """Adds or replaces an opportunity. Mappings are parsed with Opportunity.from_dict."""
        if not isinstance(opportunity, Opportunity):
            opportunity = Opportunity.from_dict(opportunity)
        if not opportunity.id or not opportunity.chain:
            raise ValidationError("Opportunity requires an id and a chain")
        with self._lock:
            replaced = opportunity.id in self._opportunities
            self._opportunities[opportunity.id] = copy.deepcopy(opportunity)
        self.log.info("%s opportunity '%s' (%s on %s)", "Replaced" if replaced else "Added",
                      opportunity.name, opportunity.id, opportunity.chain)
        return copy.deepcopy(opportunity)

    def get(self, opportunity_id: str) -> Optional[Opportunity]:
        with self._lock:
            opp = self._opportunities.get(opportunity_id)
            return copy.deepcopy(opp) if opp else None

    def list_all(self) -> List[Opportunity]:
        with self._lock:
            return [copy.deepcopy(o) for o in self._opportunities.values()]

    def list_active(self) -> List[Opportunity]:
        with self._lock:
            return [copy.deepcopy(o) for o in self._opportunities.values()
                    if o.status is OpportunityStatus.ACTIVE]

    def remove(self, opportunity_id: str) -> bool:
        with self._lock:
            return self._opportunities.pop(opportunity_id, None) is not None

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """
        Flips every Active opportunity whose deadline has passed to Expired and
        returns how many were transitioned. Expired is terminal, so a second call
        with no time passing transitions nothing.
        """
        now = now or self._clock()
        expired = []
        with self._lock:
            for opp in self._opportunities.values():
                if opp.status is OpportunityStatus.ACTIVE and opp.deadline is not None and opp.deadline < now:
                    opp.status = OpportunityStatus.EXPIRED
                    expired.append(opp.id)
        for opp_id in expired:
            self.log.info("Opportunity %s expired", opp_id)
        return len(expired)

    def mark_completed(self, opportunity_id: str) -> bool:
        """Active -> Completed. Expired and unknown opportunities return False."""
        with self._lock:
            opp = self._opportunities.get(opportunity_id)
            if opp is None or opp.status is not OpportunityStatus.ACTIVE:
                return False
            opp.status = OpportunityStatus.COMPLETED
        self.log.info("Opportunity %s completed", opportunity_id)
        return True

    def set_execution_status(self, opportunity_id: str, status: Optional[ExecutionStatus],
                             result: Optional[ExecutionResult] = None) -> bool:
        with self._lock:
            opp = self._opportunities.get(opportunity_id)
            if opp is None:
                return False
            opp.execution_status = status
            if result is not None:
                opp.last_result = result
            return True

    def counts_by_status(self) -> Dict[str, int]:
        with self._lock:
            counts = Counter(o.status.value for o in self._opportunities.values())
        return {status.value: counts.get(status.value, 0) for status in OpportunityStatus}

    def clear(self) -> None:
        with self._lock:
            self._opportunities.clear()
        self.log.info("All opportunities cleared")

    def __len__(self):
        with self._lock:
            return len(self._opportunities)
