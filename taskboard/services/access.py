"""
Access control - one authorization predicate for every role
"""
from taskboard.models.user import User, UserRole
from taskboard.services.responsibility import controlling_identities


def is_authorized(user: User, task) -> bool:
    """Whether ``user`` may mutate ``task``.

    Admins control every task; creators and users control the tasks they
    created or are responsible for.
    """
    if user is None or user.is_active is False:
        return False
    if user.role == UserRole.ADMIN:
        return True
    return user.id in controlling_identities(task)


def can_create_tasks(user: User) -> bool:
    return user is not None and user.is_active is not False and user.role in (UserRole.ADMIN, UserRole.CREATOR)
