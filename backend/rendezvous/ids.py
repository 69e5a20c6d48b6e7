"""Short opaque identifiers for sessions and parties."""

import secrets

ID_BYTES = 3  # hex encoded -> 6 characters


def generate_id() -> str:
    """Return a random 6-character hex token.

    This is a rendezvous key, not a secret: it only has to avoid accidental
    collisions for the lifetime of one transfer.
    """
    return secrets.token_hex(ID_BYTES)
