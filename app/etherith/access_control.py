"""
Etherith Access Control Evaluator

Deterministic, fail-closed read decision for a single artifact. No I/O.

Rules are evaluated top to bottom and the first match wins:

    owner             requester owns the artifact
    public            artifact is public (anonymous included)
    community_member  artifact is community-tier and the requester belongs
                      to at least one of its communities
    default_deny      anything else

Verification level is carried on the context but does not gate reads.
"""
from typing import Callable, List, Optional, Tuple

from app.etherith.core_types import (
    AccessDecision,
    AccessLevel,
    DenyReason,
    IdentityContext,
    MemoryRecord,
)

POLICY_VERSION = "etherith_access_2024_01"

Rule = Tuple[str, Callable[[MemoryRecord, IdentityContext], bool]]


def _is_owner(memory: MemoryRecord, context: IdentityContext) -> bool:
    return context.identity is not None and context.identity == memory.owner_id


def _is_public(memory: MemoryRecord, context: IdentityContext) -> bool:
    return memory.access_level == AccessLevel.PUBLIC


def _shares_community(memory: MemoryRecord, context: IdentityContext) -> bool:
    if memory.access_level != AccessLevel.COMMUNITY:
        return False
    return not context.community_memberships.isdisjoint(memory.associated_communities)


ALLOW_RULES: List[Rule] = [
    ("owner", _is_owner),
    ("public", _is_public),
    ("community_member", _shares_community),
]


def _deny_reason(memory: MemoryRecord, context: IdentityContext) -> DenyReason:
    if context.is_anonymous:
        return DenyReason.UNAUTHENTICATED
    if memory.access_level == AccessLevel.COMMUNITY:
        return DenyReason.NOT_A_MEMBER
    return DenyReason.PRIVATE_ARTIFACT


def evaluate_access(memory: MemoryRecord, context: Optional[IdentityContext]) -> AccessDecision:
    """
    Decide whether ``context`` may read ``memory``.

    A missing context is treated as anonymous.
    """
    context = context or IdentityContext.anonymous()

    for rule_id, matches in ALLOW_RULES:
        if matches(memory, context):
            return AccessDecision(allowed=True, matched_rule=rule_id, policy_version=POLICY_VERSION)

    return AccessDecision(
        allowed=False,
        matched_rule="default_deny",
        reason=_deny_reason(memory, context),
        policy_version=POLICY_VERSION,
    )


def can_modify(memory: MemoryRecord, context: Optional[IdentityContext]) -> bool:
    """Only the owner may change an artifact's metadata."""
    return context is not None and _is_owner(memory, context)
