"""
Password capture boundary.

The core only needs "a password string"; how it is obtained is up to the
caller.  ``SecretProvider`` is that capability.  The minimum-length policy
is checked here, at the boundary, and not inside the keystore.
"""

from __future__ import annotations

import getpass
from typing import Protocol

from truthstamp_core.errors import WeakPassword

MIN_PASSWORD_LENGTH = 8


class SecretProvider(Protocol):
    def get_password(self, prompt: str, confirm: bool = False) -> str:
        ...


class StaticSecretProvider:
    """Returns a fixed password (tests, automation via env/config)."""

    def __init__(self, password: str):
        self._password = password

    def get_password(self, prompt: str, confirm: bool = False) -> str:
        return self._password


class PromptSecretProvider:
    """Reads a password from the terminal without echo."""

    def get_password(self, prompt: str, confirm: bool = False) -> str:
        password = getpass.getpass(prompt)
        if confirm and getpass.getpass("Repeat password: ") != password:
            raise WeakPassword("Passwords do not match")
        return password


def check_password(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise WeakPassword(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password
