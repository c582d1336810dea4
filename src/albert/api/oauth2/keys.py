# OAuth2 key management.
# Created: 2026-10-04
#
# Three materials are kept in the options table: the RSA private key (signs
# access tokens), its public key (verifies them) and a Fernet key (encrypts
# authorization codes and refresh tokens). Everything is generated lazily on
# first use. A version id changes with every new key pair so that other
# processes holding built servers notice a regeneration.

from __future__ import annotations

import logging
import uuid

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from albert.options import OptionStore

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_OPTION = "albert_oauth_encryption_key"
PRIVATE_KEY_OPTION = "albert_oauth_private_key"
PUBLIC_KEY_OPTION = "albert_oauth_public_key"
KEY_VERSION_OPTION = "albert_oauth_key_version"

RSA_KEY_SIZE = 2048


class KeyGenerationError(Exception):
    """The RSA key pair could not be generated."""


def generate_rsa_key_pair() -> tuple[str, str]:
    """Return a new (private PEM, public PEM) pair."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem.decode("ascii"), public_pem.decode("ascii")


class KeyManager:
    """Lazily generates and persists the OAuth2 keys."""

    def __init__(self, options: OptionStore):
        self.options = options

    def get_encryption_key(self) -> str:
        return self.options.get_or_add(
            ENCRYPTION_KEY_OPTION, lambda: Fernet.generate_key().decode("ascii")
        )

    def get_private_key(self) -> str:
        return self._get_key_pair()[0]

    def get_public_key(self) -> str:
        return self._get_key_pair()[1]

    def get_key_version(self) -> str:
        """Id of the current key set. Changes whenever the keys are replaced."""
        return self.options.get_or_add(KEY_VERSION_OPTION, lambda: uuid.uuid4().hex)

    def _get_key_pair(self) -> tuple[str, str]:
        private_pem = self.options.get_option(PRIVATE_KEY_OPTION)
        public_pem = self.options.get_option(PUBLIC_KEY_OPTION)
        if private_pem and public_pem:
            return private_pem, public_pem
        return self._generate_key_pair()

    def _generate_key_pair(self) -> tuple[str, str]:
        """Generate a pair and store both halves together.

        A half-present pair is replaced as a whole. If another caller stored a
        complete pair meanwhile, that pair wins and is returned.
        """
        try:
            private_pem, public_pem = generate_rsa_key_pair()
        except (ValueError, TypeError) as exc:
            raise KeyGenerationError(f"RSA key generation failed: {exc}") from exc

        with self.options.db.transaction():
            existing_private = self.options.get_option(PRIVATE_KEY_OPTION)
            existing_public = self.options.get_option(PUBLIC_KEY_OPTION)
            if existing_private and existing_public:
                return existing_private, existing_public
            self.options.update_option(PRIVATE_KEY_OPTION, private_pem)
            self.options.update_option(PUBLIC_KEY_OPTION, public_pem)
            self.options.update_option(KEY_VERSION_OPTION, uuid.uuid4().hex)

        logger.info("Generated new OAuth RSA key pair")
        return private_pem, public_pem

    def regenerate_keys(self) -> None:
        """Replace all keys. Every outstanding code and token stops validating."""
        self.delete_keys()
        self.get_encryption_key()
        self.get_private_key()
        logger.warning("OAuth keys regenerated; all issued tokens are now invalid")

    def delete_keys(self) -> None:
        with self.options.db.transaction():
            for name in (
                ENCRYPTION_KEY_OPTION,
                PRIVATE_KEY_OPTION,
                PUBLIC_KEY_OPTION,
                KEY_VERSION_OPTION,
            ):
                self.options.delete_option(name)
