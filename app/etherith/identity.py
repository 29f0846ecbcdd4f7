"""
Etherith Identity Context adapter.

Turns an authenticated uid (already verified by the auth collaborator) into
the IdentityContext the access evaluator consumes.
"""
import logging
from typing import Optional

from app.etherith.core_types import IdentityContext
from app.etherith.repository import ArtifactRepository

logger = logging.getLogger(__name__)


def build_identity_context(repository: ArtifactRepository, user_id: Optional[str]) -> IdentityContext:
    """
    Resolve verification level and memberships for ``user_id``.

    A uid with no registered profile is still an authenticated identity, at
    verification level 0 with no memberships.
    """
    if user_id is None:
        return IdentityContext.anonymous()

    user = repository.get_user(user_id)
    if user is None:
        logger.debug("Authenticated uid has no profile", extra={"user_id": user_id})
        return IdentityContext(identity=user_id)

    return IdentityContext(
        identity=user.id,
        verification_level=max(int(user.verification_level or 0), 0),
        community_memberships=repository.get_memberships(user.id),
    )
