"""Generation of the PostgreSQL role credentials of a new cluster."""

import secrets as secrets_module
import string

from pgcluster.models import PostgresCredentials

ADMIN_USERNAME = "pgadmin"
SUPERUSER_USERNAME = "postgres"
APP_USERNAME = "appuser"


def generate_secure_password(length: int = 16) -> str:
    """Generate a cryptographically secure random password.

    Only letters and digits are used so the password can be embedded in
    connection URIs without escaping.

    Args:
        length: Length of the password (default: 16)

    Returns:
        A secure random password string
    """
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets_module.choice(alphabet) for _ in range(length))


def create_cluster_credentials() -> dict[str, PostgresCredentials]:
    """Create admin, superuser and app credentials with fresh passwords.

    Returns:
        Keyword arguments for the credential fields of ClusterState
    """
    return {
        "admin_credentials": PostgresCredentials(
            username=ADMIN_USERNAME, password=generate_secure_password()
        ),
        "superuser_credentials": PostgresCredentials(
            username=SUPERUSER_USERNAME, password=generate_secure_password()
        ),
        "app_credentials": PostgresCredentials(
            username=APP_USERNAME, password=generate_secure_password()
        ),
    }
