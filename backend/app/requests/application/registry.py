import logging
from typing import Callable, Dict, Optional

from app.requests.application.coordinator import MaterialRequestCoordinator
from app.requests.application.session import AuthEvent, SessionContext, SessionListener

logger = logging.getLogger(__name__)

CoordinatorFactory = Callable[[str], MaterialRequestCoordinator]


class CoordinatorRegistry:
    """One coordinator, and so one cache, per company."""

    def __init__(self, factory: CoordinatorFactory) -> None:
        self._factory = factory
        self._coordinators: Dict[str, MaterialRequestCoordinator] = {}

    def get(self, company_id: str) -> MaterialRequestCoordinator:
        coordinator = self._coordinators.get(company_id)
        if coordinator is None:
            coordinator = self._factory(company_id)
            self._coordinators[company_id] = coordinator
            logger.debug("Coordinator created for company %s", company_id)
        return coordinator

    def peek(self, company_id: str) -> Optional[MaterialRequestCoordinator]:
        return self._coordinators.get(company_id)

    def reset(self, company_id: str) -> None:
        coordinator = self._coordinators.get(company_id)
        if coordinator is not None:
            coordinator.reset()

    async def close_all(self) -> None:
        coordinators = list(self._coordinators.values())
        self._coordinators.clear()
        for coordinator in coordinators:
            await coordinator.close()

    def __len__(self) -> int:
        return len(self._coordinators)

    def __contains__(self, company_id: object) -> bool:
        return company_id in self._coordinators


def reset_on_sign_out(registry: CoordinatorRegistry) -> SessionListener:
    """Session listener that drops a tenant's cached data when its user signs out."""

    def listener(event: AuthEvent, session: Optional[SessionContext]) -> None:
        if event is AuthEvent.SIGNED_OUT and session is not None and session.company_id:
            registry.reset(session.company_id)

    return listener
