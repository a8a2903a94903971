"""
Shared dispatch of one resource operation to its resolved remotes.
"""
from typing import Callable, List

import structlog

from ..CONFIG.settings import EndpointPolicy
from ..MODELS.application_model import ApplicationModel
from ..REMOTE.resolver import ResolvedResource, ResourceResolver
from ..UTILS.errors import AggregateError, RemoteOperationError, ResolutionError

log = structlog.get_logger(__name__)


class ResourceManager:
    """
    Base class for managers that create and delete one kind of resource.
    """
    kind = "resource"

    def __init__(self, resolver: ResourceResolver, policy: EndpointPolicy = EndpointPolicy.FIRST):
        """
        :param resolver: Resolver bound to the application model.
        :param policy: Whether to use the first resolved remote or all of them.
        """
        self.resolver = resolver
        self.policy = policy

    @property
    def model(self) -> ApplicationModel:
        return self.resolver.model

    def _select(self, handles: List[ResolvedResource]) -> List[ResolvedResource]:
        if self.policy == EndpointPolicy.ALL:
            return handles
        if len(handles) > 1:
            log.debug("using first resolved remote", kind=self.kind, name=handles[0].name,
                      remote=handles[0].remote, candidates=len(handles))
        return handles[:1]

    def _dispatch(
        self,
        action: str,
        resolve: Callable[[], List[ResolvedResource]],
        call: Callable[[ResolvedResource], None],
    ) -> AggregateError:
        """
        Resolves a resource and runs one remote call per selected remote.

        Failures are returned, not raised, so the caller can carry on with
        other resources.

        :param action: "create" or "delete", for error reporting.
        :param resolve: Produces the resolved handles for the resource.
        :param call: Issues the remote call for one handle.
        :return: The failures, empty on success.
        """
        errors = AggregateError()
        try:
            handles = self._select(resolve())
        except ResolutionError as e:
            e.kind = e.kind or self.kind
            errors.add(e)
            return errors

        for handle in handles:
            try:
                call(handle)
            except Exception as e:
                errors.add(RemoteOperationError(self.kind, handle.name, action, e))
        return errors
