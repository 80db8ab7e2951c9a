"""Role-based access control for engine calls.

Role hierarchy: admin > reviewer > viewer
"""

from __future__ import annotations

from typing import Optional

from modqueue.auth.models import Role, Session
from modqueue.errors import Forbidden


def has_permission(session: Session, required_role: Role) -> bool:
    """Check if a session's role meets or exceeds the required role level.

    Parameters
    ----------
    session:
        The caller's session.
    required_role:
        The minimum role required.

    Returns
    -------
    bool
        True if the session's role level >= required role level.
    """
    role = session.role if isinstance(session.role, Role) else Role(session.role)
    return role.level >= required_role.level


def require_role(session: Optional[Session], role: Role) -> Session:
    """Validate that a session exists and has at least the given role.

    Raises :class:`~modqueue.errors.Forbidden` otherwise, before any engine
    logic runs.
    """
    if session is None:
        raise Forbidden("Reviewer access required")
    if not has_permission(session, role):
        raise Forbidden(f"Requires role '{role.value}' or higher")
    return session
