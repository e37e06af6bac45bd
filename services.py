"""Accounts, projects, credits and guest usage on top of a DocumentStore."""
import logging

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from werkzeug.security import check_password_hash, generate_password_hash

from models import Project, Transaction, User, now_ms

logger = logging.getLogger(__name__)

USERS = "users"
PROJECTS = "projects"
TRANSACTIONS = "transactions"
GUEST_USAGE = "guest_usage"

ONE_DAY_MS = 24 * 60 * 60 * 1000


class ServiceError(Exception):
    status_code = 400


class InvalidCredentials(ServiceError):
    status_code = 401


class AccountBanned(ServiceError):
    status_code = 403

    def __init__(self, message="This account has been suspended."):
        super().__init__(message)


class UserExists(ServiceError):
    status_code = 409


class NotFound(ServiceError):
    status_code = 404


class InsufficientCredits(ServiceError):
    status_code = 402

    def __init__(self, message="You're out of credits. Buy more to keep building."):
        super().__init__(message)


class GuestLimitReached(ServiceError):
    status_code = 402

    def __init__(self, message="Guest limit reached. Sign up to keep building."):
        super().__init__(message)


class CreditLedger:
    def __init__(self, store, daily_free_credits):
        self.store = store
        self.daily_free_credits = daily_free_credits

    def _save(self, user):
        self.store.put(USERS, user.id, user.to_doc())

    def _log(self, user_id, amount, cost, kind):
        tx = Transaction(user_id=user_id, amount=amount, cost=cost, type=kind)
        self.store.put(TRANSACTIONS, tx.id, tx.to_doc())
        return tx

    def reset_daily(self, user, now=None):
        """Restore free credits once the rolling 24h window has passed.

        Returns the (possibly updated) user and persists the change.
        Anonymous users never get a reset.
        """
        now = now_ms() if now is None else now
        if user.is_anonymous or now - user.last_daily_reset <= ONE_DAY_MS:
            return user
        updated = user.model_copy(update={
            "free_credits": self.daily_free_credits,
            "last_daily_reset": now,
        })
        self._save(updated)
        self._log(user.id, self.daily_free_credits, 0.0, "daily_reset")
        logger.info("Daily credits reset for %s", user.id)
        return updated

    def _change(self, user_id, fn):
        def apply(doc):
            if doc is None:
                raise NotFound("User not found")
            user = User.model_validate(doc)
            fn(user)
            return user.to_doc()
        return User.model_validate(self.store.update(USERS, user_id, apply))

    def deduct(self, user_id):
        def spend(user):
            if user.free_credits > 0:
                user.free_credits -= 1
            elif user.purchased_credits > 0:
                user.purchased_credits -= 1
            else:
                raise InsufficientCredits()
        return self._change(user_id, spend)

    def purchase(self, user_id, amount, cost):
        if amount <= 0:
            raise ServiceError("Amount must be positive")

        def add(user):
            user.purchased_credits += amount
        user = self._change(user_id, add)
        self._log(user_id, amount, cost, "purchase")
        logger.info("User %s purchased %d credits for $%.2f", user_id, amount, cost)
        return user


class GuestUsage:
    """Per-guest generation counter with a fixed ceiling."""

    def __init__(self, store, limit):
        self.store = store
        self.limit = limit

    def count(self, guest_id):
        doc = self.store.get(GUEST_USAGE, guest_id)
        return doc["count"] if doc else 0

    def remaining(self, guest_id):
        return max(self.limit - self.count(guest_id), 0)

    def consume(self, guest_id):
        def bump(doc):
            count = doc["count"] if doc else 0
            if count >= self.limit:
                raise GuestLimitReached()
            return {"count": count + 1}
        return self.store.update(GUEST_USAGE, guest_id, bump)["count"]


class AuthService:
    def __init__(self, store, ledger, admin_email=None):
        self.store = store
        self.ledger = ledger
        self.admin_email = (admin_email or "").lower() or None

    def _by_email(self, email):
        found = self.store.find(USERS, email=email)
        return User.model_validate(found[0]) if found else None

    def _save(self, user):
        self.store.put(USERS, user.id, user.to_doc())

    def _check_and_reset(self, user):
        if user.is_banned:
            raise AccountBanned()
        return self.ledger.reset_daily(user)

    def is_admin(self, user):
        return bool(user and self.admin_email and user.email.lower() == self.admin_email)

    def sign_up(self, name, email, password):
        email = email.strip().lower()
        if not email or not password:
            raise ServiceError("Email and password are required")
        if self._by_email(email):
            raise UserExists("User already exists")
        user = User(
            email=email,
            name=name or email.split("@")[0],
            free_credits=self.ledger.daily_free_credits,
            password_hash=generate_password_hash(password),
        )
        self._save(user)
        logger.info("New user %s", user.id)
        return user

    def sign_in(self, email, password):
        user = self._by_email(email.strip().lower())
        if user is None or not user.password_hash or not check_password_hash(user.password_hash, password):
            raise InvalidCredentials("Invalid credentials")
        return self._check_and_reset(user)

    def sign_in_with_provider(self, provider, profile):
        """Sign in with an identity already verified by ``provider``.

        ``profile`` needs an ``email`` the provider marked ``email_verified``
        and may carry ``name`` and ``picture``. The user record is created on
        first sign-in.
        """
        email = (profile.get("email") or "").strip().lower()
        if not email:
            raise InvalidCredentials(f"{provider} did not return an email address")
        if profile.get("email_verified") is not True:
            raise InvalidCredentials(f"{provider} has not verified {email}")
        user = self._by_email(email)
        if user is None:
            user = User(
                email=email,
                name=profile.get("name") or "User",
                photo_url=profile.get("picture"),
                free_credits=self.ledger.daily_free_credits,
            )
            self._save(user)
            logger.info("New %s user %s", provider, user.id)
        return self._check_and_reset(user)

    def sign_in_anonymously(self, guest_id=None):
        """Resume the guest ``guest_id`` if it still exists, else start a new one."""
        if guest_id:
            doc = self.store.get(USERS, guest_id)
            if doc is not None and doc.get("isAnonymous") and not doc.get("isBanned"):
                return User.model_validate(doc)
        user = User(email="", name="Guest", is_anonymous=True)
        self._save(user)
        return user

    def get_current_user(self, user_id):
        if not user_id:
            return None
        doc = self.store.get(USERS, user_id)
        if doc is None:
            return None
        user = User.model_validate(doc)
        if user.is_banned:
            return None
        return self.ledger.reset_daily(user)


def verify_google_token(token, client_id):
    """Verify a Google Identity Services ID token and return its claims."""
    try:
        return id_token.verify_oauth2_token(token, google_requests.Request(), client_id)
    except ValueError as e:
        raise InvalidCredentials(f"Invalid Google token: {e}") from e


class ProjectService:
    def __init__(self, store):
        self.store = store

    def create(self, user_id, name="", description=""):
        project = Project(
            user_id=user_id,
            name=name or "Untitled Project",
            description=description or "",
        )
        self.store.put(PROJECTS, project.id, project.to_doc())
        return project

    def update(self, project):
        project.updated_at = now_ms()
        self.store.put(PROJECTS, project.id, project.to_doc())
        return project

    def list_for_user(self, user_id):
        projects = [Project.model_validate(d) for d in self.store.find(PROJECTS, userId=user_id)]
        projects.sort(key=lambda p: p.updated_at, reverse=True)
        return projects

    def get_owned(self, project_id, user_id):
        doc = self.store.get(PROJECTS, project_id)
        if doc is None or doc.get("userId") != user_id:
            raise NotFound("Project not found")
        return Project.model_validate(doc)

    def get_public(self, project_id):
        doc = self.store.get(PROJECTS, project_id)
        if doc is None or not doc.get("isPublic"):
            return None
        return Project.model_validate(doc)

    def publish(self, project_id, user_id):
        project = self.get_owned(project_id, user_id)
        project.is_public = True
        self.update(project)
        return project

    def delete(self, project_id, user_id):
        self.get_owned(project_id, user_id)
        self.store.delete(PROJECTS, project_id)


class AdminService:
    def __init__(self, store):
        self.store = store

    def list_users(self, limit=50):
        users = [User.model_validate(d) for d in self.store.all(USERS)]
        users.sort(key=lambda u: u.created_at, reverse=True)
        return users[:limit]

    def list_transactions(self, limit=100):
        txs = [Transaction.model_validate(d) for d in self.store.all(TRANSACTIONS)]
        txs.sort(key=lambda t: t.timestamp, reverse=True)
        return txs[:limit]

    def toggle_ban(self, user_id):
        doc = self.store.get(USERS, user_id)
        if doc is None:
            raise NotFound("User not found")
        user = User.model_validate(doc)
        user.is_banned = not user.is_banned
        self.store.put(USERS, user.id, user.to_doc())
        logger.info("User %s banned=%s", user_id, user.is_banned)
        return user.is_banned
