"""
Credential provisioning for Hub instances.

Each Hub gets one generated admin credential, stored as an ``Opaque``
Secret under a well-known name in the Hub's namespace and owned by the Hub.
Once created it is never regenerated.
"""

import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from hub.base import SECRET_KIND, HubResource, OwnerReference
from hub.errors import AlreadyExistsError, NotFoundError

PASSWORD_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits

DEFAULT_SECRET_NAME = "mongodb-admin"
DEFAULT_USER = "some@example.com"
DEFAULT_PASSWORD_LENGTH = 16

Log = Union[logging.Logger, logging.LoggerAdapter]


def generate_password(length: int = DEFAULT_PASSWORD_LENGTH) -> str:
    """
    Generate a random password over ``A-Z a-z 0-9``.

    Every character is an independent uniform draw from the CSPRNG.

    Raises:
        ValueError: If length is negative
    """
    if length < 0:
        raise ValueError(f"Password length must be non-negative, got {length}")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


@dataclass
class Credential:
    """Generated admin credential for a Hub."""

    namespace: str
    name: str
    user: str
    password: str = field(repr=False)
    owner_references: List[OwnerReference] = field(default_factory=list)

    def to_body(self) -> Dict[str, Any]:
        return {
            "type": "Opaque",
            "stringData": {"user": self.user, "password": self.password},
        }


class CredentialProvisioner:
    """Ensures the admin credential of a Hub exists."""

    def __init__(
        self,
        store,
        secret_name: str = DEFAULT_SECRET_NAME,
        user: str = DEFAULT_USER,
        password_length: int = DEFAULT_PASSWORD_LENGTH,
    ):
        self.store = store
        self.secret_name = secret_name
        self.user = user
        self.password_length = password_length

    def build_credential(self, owner: HubResource) -> Credential:
        """Build a fresh credential owned by ``owner``."""
        return Credential(
            namespace=owner.namespace,
            name=self.secret_name,
            user=self.user,
            password=generate_password(self.password_length),
            owner_references=[owner.owner_reference()],
        )

    async def ensure_credential(self, owner: HubResource, log: Log) -> bool:
        """
        Create the credential for ``owner`` unless it already exists.

        An existing credential is left exactly as it is. Losing a creation
        race to a concurrent reconciliation counts as success.

        Args:
            owner: The Hub the credential belongs to
            log: Request-scoped logger

        Returns:
            True if this call created the credential

        Raises:
            TransientStoreError: If the lookup or creation failed
        """
        try:
            await self.store.get_object(SECRET_KIND, owner.namespace, self.secret_name)
            log.debug(f"Secret {owner.namespace}/{self.secret_name} already exists")
            return False
        except NotFoundError:
            pass

        credential = self.build_credential(owner)
        log.info(f"Creating a new secret {credential.namespace}/{credential.name}")
        try:
            await self.store.create_object(
                SECRET_KIND,
                credential.namespace,
                credential.name,
                body=credential.to_body(),
                owner_references=credential.owner_references,
            )
        except AlreadyExistsError:
            log.info(
                f"Secret {credential.namespace}/{credential.name} was created "
                f"concurrently, keeping the existing one"
            )
            return False
        except Exception as e:
            log.error(
                f"Failed to create secret {credential.namespace}/{credential.name}: {e}"
            )
            raise

        return True
