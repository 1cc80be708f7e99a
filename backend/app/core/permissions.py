"""Authorization matrix.

One predicate per operation so the role rules can be tested without a
request. ``user`` is the authenticated principal (anything with ``id`` and
``role``); ``student`` anything with ``guardian_ids``.
"""

import uuid

ADMIN = "admin"
STAFF = "staff"
GUARDIAN = "guardian"


def is_admin(user) -> bool:
    return user.role == ADMIN


def is_linked_guardian(user, student) -> bool:
    return user.role == GUARDIAN and user.id in student.guardian_ids


# -- Guardian directory ------------------------------------------------------

def can_manage_guardians(user) -> bool:
    """List, create and delete guardian records."""
    return is_admin(user)


def can_read_guardian(user, guardian_id: uuid.UUID) -> bool:
    return is_admin(user) or user.id == guardian_id


def can_update_guardian(user, guardian_id: uuid.UUID) -> bool:
    return is_admin(user) or user.id == guardian_id


def can_change_guardian_links(user) -> bool:
    """Change ``role`` or ``children_ids`` on a guardian record."""
    return is_admin(user)


# -- Student directory -------------------------------------------------------

def can_manage_students(user) -> bool:
    """List, create, update and delete students."""
    return is_admin(user)


def can_read_student(user, student) -> bool:
    return is_admin(user) or is_linked_guardian(user, student)


# -- Pickup ------------------------------------------------------------------

def can_issue_pickup_code(user, student, guardian_id: uuid.UUID) -> bool:
    """Admins may issue for anyone; otherwise the guardian must be linked
    to the student."""
    return is_admin(user) or guardian_id in student.guardian_ids


def can_manage_authorized_pickups(user, student) -> bool:
    return is_admin(user) or is_linked_guardian(user, student)


def can_verify_pickup(user) -> bool:
    return user.role in (STAFF, ADMIN)


def can_view_all_pickup_logs(user) -> bool:
    return user.role in (STAFF, ADMIN)
