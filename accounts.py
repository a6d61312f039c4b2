"""User accounts: roles, permissions and password checks."""
import logging

from werkzeug.security import check_password_hash, generate_password_hash

from errors import NotFoundError, ValidationError
from models import TECHNICIANS, Role, Technician

log = logging.getLogger(__name__)

# Permissions fixed by role; other roles get what the administrator ticks
ROLE_PERMISSIONS = {
    Role.ADMIN: ['all'],
    Role.GUEST: ['read-only'],
    Role.OPERATOR: ['requests'],
}


class AccountService:

    def __init__(self, store):
        self.store = store

    def _find(self, username):
        matches = self.store.query(TECHNICIANS, username=username)
        return matches[0] if matches else (None, None)

    def get(self, username):
        doc_id, data = self._find(username)
        if doc_id is None:
            raise NotFoundError(TECHNICIANS, username)
        return Technician.from_dict(data)

    def save(self, username, role, password=None, salary=0, permissions=None,
             managed_machine_ids=None, original_username=None):
        """Create or update a user. A blank password keeps the current one."""
        username = (username or '').strip()
        if not username:
            raise ValidationError("Username is required.")
        if role not in Role.ALL:
            raise ValidationError(f"Unknown role '{role}'.")

        doc_id, current = self._find(original_username or username)
        if doc_id is None and original_username:
            raise NotFoundError(TECHNICIANS, original_username)

        other_id, _ = self._find(username)
        if other_id is not None and other_id != doc_id:
            raise ValidationError("Username already exists")
        if doc_id is None and not password:
            raise ValidationError("A password is required for new users.")

        try:
            salary = float(salary or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError("Salary must be a number.") from e
        if salary < 0:
            raise ValidationError("Salary cannot be negative.")

        technician = Technician(
            username=username,
            password=generate_password_hash(password) if password else current['password'],
            role=role,
            permissions=list(ROLE_PERMISSIONS.get(role, permissions or [])),
            managed_machine_ids=list(managed_machine_ids or []) if role == Role.AREA_SUPERVISOR else [],
            salary=0.0 if role == Role.OPERATOR else salary,
        )
        if doc_id is None:
            self.store.create(TECHNICIANS, technician.to_dict())
            log.info("User %s created with role %s", username, role)
        else:
            self.store.upsert(TECHNICIANS, doc_id, technician.to_dict())
            log.info("User %s updated", username)
        return technician

    def authenticate(self, username, password):
        """The user when `password` matches their stored hash, else None."""
        doc_id, data = self._find(username)
        if doc_id is None or not data.get('password'):
            return None
        if not check_password_hash(data['password'], password or ''):
            log.warning("Failed login for %s", username)
            return None
        return Technician.from_dict(data)

    def delete(self, username, current_username=None):
        if username == current_username:
            raise ValidationError("You cannot delete the user you are signed in with.")
        doc_id, _ = self._find(username)
        if doc_id is None:
            raise NotFoundError(TECHNICIANS, username)
        self.store.delete(TECHNICIANS, doc_id)
        log.info("User %s deleted", username)

    def ensure_admin(self, username, password, salary=0):
        """Create the first administrator when there are no users at all."""
        if self.store.query(TECHNICIANS):
            return None
        log.info("No users found, creating administrator account %s", username)
        return self.save(username, Role.ADMIN, password=password, salary=salary)
