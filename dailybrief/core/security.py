import hmac
import secrets
import string

from dailybrief.config import Settings

INBOUND_HASH_ALPHABET = string.ascii_lowercase + string.digits
INBOUND_HASH_LENGTH = 10


def generate_claim_token() -> str:
    """Generate a random token identifying one delivery claim."""
    return secrets.token_urlsafe(16)


def generate_inbound_email_hash() -> str:
    """Generate the per-user suffix of the reply-to inbound address."""
    return "".join(secrets.choice(INBOUND_HASH_ALPHABET) for _ in range(INBOUND_HASH_LENGTH))


def build_reply_to_address(account_email: str, inbound_hash: str | None, domain: str) -> str:
    """Build the reply-to address replies are routed back through."""
    prefix = (account_email or "user").split("@")[0]
    return f"{prefix}-{inbound_hash or 'default'}@{domain}"


def is_trusted_trigger(user_agent: str | None, settings: Settings) -> bool:
    """True when the request comes from the platform cron runner."""
    expected = settings.trusted_cron_user_agent
    return bool(expected and user_agent and expected in user_agent)


def verify_bearer_token(authorization: str | None, settings: Settings) -> bool:
    """Constant-time check of ``Authorization: Bearer <CRON_SECRET_TOKEN>``."""
    if not settings.cron_secret_token or not authorization:
        return False
    expected = f"Bearer {settings.cron_secret_token}"
    return hmac.compare_digest(expected.encode(), authorization.encode())
