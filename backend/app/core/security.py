from typing import Dict, Any
from functools import lru_cache
import logging

from fastapi import HTTPException, status
from keycloak import KeycloakOpenID
from keycloak.exceptions import KeycloakError
from jose import JWTError
from app.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

keycloak_openid = KeycloakOpenID(
    server_url=settings.keycloak_url,
    client_id=settings.keycloak_client_id,
    realm_name=settings.keycloak_realm,
    verify=True
)


@lru_cache
def get_public_key() -> str:
    """Öffentlicher Realm-Schlüssel im PEM-Format (einmal pro Prozess geladen)"""
    return "-----BEGIN PUBLIC KEY-----\n" + keycloak_openid.public_key() + "\n-----END PUBLIC KEY-----"


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verifiziert das JWT lokal mit dem Keycloak-Schlüssel.
    Gibt die Claims zurück oder wirft 401.
    """
    options = {
        "verify_signature": True,
        "verify_aud": True,
        "verify_exp": True
    }
    try:
        return keycloak_openid.decode_token(token, key=get_public_key(), options=options)
    except (JWTError, KeycloakError, ValueError) as e:
        logger.warning(f"Token-Prüfung fehlgeschlagen: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Ungültige Anmeldedaten",
            headers={"WWW-Authenticate": "Bearer"},
        )
