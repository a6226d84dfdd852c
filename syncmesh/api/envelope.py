"""Enveloppe textuelle des actions d'administration.

Les endpoints d'action (run, requeue, approve, repair...) répondent `success::<message>` ou
`error::<message>` en text/plain; les lectures répondent en JSON.
"""

from __future__ import annotations

from fastapi.responses import PlainTextResponse

SUCCESS = "success"
ERROR = "error"
SEPARATOR = "::"


def success(message: str) -> str:
    return f"{SUCCESS}{SEPARATOR}{message}"


def error(message: str) -> str:
    return f"{ERROR}{SEPARATOR}{message}"


def parse_envelope(text: str) -> tuple[bool, str]:
    """Retourne (ok, message); un texte sans préfixe connu est une erreur."""
    prefix, sep, message = (text or "").partition(SEPARATOR)
    if not sep or prefix not in (SUCCESS, ERROR):
        return False, text or ""
    return prefix == SUCCESS, message


def envelope_response(ok: bool, message: str) -> PlainTextResponse:
    return PlainTextResponse(success(message) if ok else error(message))
