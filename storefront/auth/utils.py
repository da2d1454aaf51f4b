import hashlib
import secrets
from email_validator import EmailNotValidError, validate_email
from passlib.context import CryptContext
from storefront.auth.constants import SPECIALS
from storefront.config.settings import config_settings

PASS_HASH_SCHEME=config_settings.PASS_HASH_SCHEME
TOKEN_HASH_ALGO = config_settings.TOKEN_HASH_ALGO

pwd_context = CryptContext(schemes=[PASS_HASH_SCHEME], deprecated="auto")

def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)

def validate_password(password: str, min_length: int = 8) -> tuple[bool, str]:
    pw = (password or "").strip()
    if len(pw) < min_length:
        return False, f"Password must be at least {min_length} characters long"
    if not any(c.islower() for c in pw):
        return False, "Password must include at least one lowercase letter"
    if not any(c.isupper() for c in pw):
        return False, "Password must include at least one uppercase letter"
    if not any(c.isdigit() for c in pw):
        return False, "Password must include at least one digit"
    if not any(c in SPECIALS for c in pw):
        return False, "Password must include at least one special character"
    return True, "OK"


def generate_plain_token(nbytes: int = 48) -> str:
    return secrets.token_urlsafe(nbytes)

def make_reset_token_plain() -> str:
    return generate_plain_token(32)

def hash_token(plain:str)->str:
    hash_func=getattr(hashlib,TOKEN_HASH_ALGO)
    return hash_func(plain.encode()).hexdigest()


def normalize_email_address(email: str) -> str:
    """
    Validate and return normalized email (lowercased, normalized by email-validator).
    Raises ValueError if invalid.
    """
    try:
        v = validate_email(email, check_deliverability=False)
        return v.normalized.lower()
    except EmailNotValidError as e:
        raise ValueError(str(e))
