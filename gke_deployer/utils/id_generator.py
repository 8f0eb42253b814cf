"""ID generation utilities."""

import os
import secrets
import string


def generate_nanoid(length: int = 21, alphabet: str = string.ascii_letters + string.digits + "_-") -> str:
    """
    Generate a nanoid-style random ID.

    Args:
        length: Length of the ID to generate
        alphabet: Characters to draw from

    Returns:
        A random string of ``length`` characters from ``alphabet``.
    """
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_run_id() -> str:
    """Generate an ID for one deployment attempt.

    Includes the process id so concurrent pipeline runs on one host never
    share an ephemeral path. Lowercase only, safe for file names.
    """
    return f"{os.getpid()}-{generate_nanoid(12, string.ascii_lowercase + string.digits)}"
