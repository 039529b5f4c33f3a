import secrets
from datetime import datetime, timezone
from cryptography.fernet import Fernet, InvalidToken

from ..config import settings

SESSION_TOKEN_BYTES = 16  # 32 hex characters

# Initialize Fernet cipher - use the key from settings
def _get_cipher():
    """Get Fernet cipher using key from settings"""
    try:
        key = settings.ENCRYPTION_KEY
        if isinstance(key, str):
            key = key.encode()
        return Fernet(key)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid ENCRYPTION_KEY in .env: {str(e)}. Key must be 44 characters (base64-encoded 32 bytes). Generate with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'")

def encrypt_secret(value: str) -> str:
    """Encrypt a secret (wireless passphrase) for storage"""
    cipher_suite = _get_cipher()
    return cipher_suite.encrypt(value.encode()).decode()

def decrypt_secret(encrypted_value: str) -> str:
    """Decrypt a stored secret"""
    try:
        cipher_suite = _get_cipher()
        return cipher_suite.decrypt(encrypted_value.encode()).decode()
    except InvalidToken as e:
        raise ValueError(f"Failed to decrypt secret. This usually means the ENCRYPTION_KEY has changed. Error: {str(e)}")

def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def generate_session_token() -> str:
    """Opaque migration token, fixed length"""
    return secrets.token_hex(SESSION_TOKEN_BYTES)

def log_system_event(db, level: str, module: str, action: str, message: str, details: dict = None, user_id: int = None, hardware_id: str = None):
    """Log system events to database (caller commits)"""
    from ..models.system_log import SystemLog

    log_entry = SystemLog(
        log_level=level,
        module=module,
        action=action,
        message=message,
        details=details,
        user_id=user_id,
        hardware_id=hardware_id
    )
    db.add(log_entry)
