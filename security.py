from fastapi import HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
from config import settings
import secrets
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name=settings.api_key_name, auto_error=False)

class SecurityManager:
    def __init__(self, admin_api_key: Optional[str] = None):
        self.api_key_hash = None
        if admin_api_key:
            self.api_key_hash = hashlib.sha256(admin_api_key.encode()).hexdigest()
        else:
            logger.warning("ADMIN_API_KEY is not set, all admin endpoints will reject requests")

    def is_admin(self, api_key: Optional[str]) -> bool:
        if not self.api_key_hash or not api_key:
            return False
        provided_hash = hashlib.sha256(api_key.encode()).hexdigest()
        return secrets.compare_digest(provided_hash, self.api_key_hash)

    def require_admin(self, api_key: Optional[str] = Security(api_key_header)) -> str:
        """Validate the admin API key header"""
        if not self.is_admin(api_key):
            raise HTTPException(status_code=401, detail="Unauthorized")
        return api_key

# Global security manager instance
security_manager = SecurityManager(settings.admin_api_key)
