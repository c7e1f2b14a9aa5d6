"""
Context Resolver
================

Builds DirectoryContext values from a target type, a name and an optional
credential. Construction is pure: nothing is contacted, so an unreachable
target only shows up when the context is used.
"""

from typing import Optional, Union

from ..errors import DirectoryError, ErrorKind
from ..model.schemas import ContextType, Credential, DirectoryContext


def credential_parts(credential: Optional[Credential]) -> tuple:
    """(bind principal, password) for a credential, (None, None) without one."""
    if credential is None:
        return None, None
    return credential.bind_principal, credential.password


class ContextResolver:
    """Builds bindable contexts.

    Usage:
        resolver = ContextResolver()
        context = resolver.resolve(ContextType.DOMAIN, "corp.local",
                                   Credential.parse("CORP\\\\admin", "pw"))
    """

    def resolve(
        self,
        context_type: Union[ContextType, str],
        name: str,
        credential: Optional[Credential] = None
    ) -> DirectoryContext:
        """Build a context for name.

        Raises:
            DirectoryError: InvalidArgument for an empty name or unknown type
        """
        if isinstance(context_type, str):
            try:
                context_type = ContextType.from_string(context_type)
            except ValueError as e:
                raise DirectoryError(
                    ErrorKind.INVALID_ARGUMENT, "resolve-context", str(e), context_type, cause=e
                ) from e

        if not name or not name.strip():
            raise DirectoryError(
                ErrorKind.INVALID_ARGUMENT, "resolve-context",
                f"A name is required to build a {context_type.value} context"
            )

        username, password = credential_parts(credential)
        return DirectoryContext(context_type, name.strip(), username, password)
