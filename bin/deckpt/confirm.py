from __future__ import annotations

import logging
import secrets
import string

import click

from deckpt.errors import ConfirmationFailed

_LOGGER = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_uppercase + string.digits


def generate_token(length: int = 6) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def stdin_is_interactive() -> bool:
    return click.get_text_stream("stdin").isatty()


def require_confirmation(operation: str, token: str | None = None) -> None:
    """Make the operator type back a one-time token before a destructive operation.

    Raises ConfirmationFailed when stdin is not a terminal, on EOF, or on a mismatch.
    """
    if not stdin_is_interactive():
        _LOGGER.error("Refusing to %s: confirmation needs an interactive terminal", operation)
        raise ConfirmationFailed(f"Refusing to {operation} without an interactive confirmation")
    token = token or generate_token()
    click.echo(f'Confirm operation: "{operation}"')
    try:
        typed = click.prompt(f"Type {token} to proceed", default="", show_default=False)
    except click.Abort as e:
        raise ConfirmationFailed(f"Confirmation for {operation} aborted") from e
    if typed.strip() != token:
        _LOGGER.error("Confirmation token mismatch for %s", operation)
        raise ConfirmationFailed(f"Confirmation for {operation} did not match")
    _LOGGER.info("Operator confirmed %s", operation)
