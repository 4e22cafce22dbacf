"""Lookup of users in the external user directory."""
from sqlalchemy.orm import Session

from exceptions import UserNotFound
from models import User


class UserDirectory:
    """Resolves the opaque identity handed over by authentication."""

    def get_by_email(self, db: Session, email: str) -> User:
        """
        Find a user by email.

        Raises:
            UserNotFound: If no user has that email
        """
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            raise UserNotFound(email)
        return user
