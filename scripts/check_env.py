"""Sanity-check a Weatherify environment file before starting the API.

Loading ``AppSettings`` catches missing or malformed values. On top of that the
tool reports deployment mistakes pydantic cannot see:

* ``SPOTIFY_REDIRECT_URI`` must reach the callback route, and Spotify only
  accepts plain ``http`` redirect URIs on loopback addresses.
* ``SESSION_SECRET`` and ``TOKEN_ENCRYPTION_SECRET`` silently fall back to the
  Spotify client secret when unset, so rotating that secret would log every
  user out and make stored tokens unreadable.
* ``CORS_ALLOW_ORIGINS`` entries must be bare origins; browsers reject a
  wildcard origin on credentialed requests.
* An HTTPS front-end should be paired with ``SESSION_COOKIE_SECURE=true``.

Example usages::

    python -m scripts.check_env --env-file /opt/weatherify/.env

    # Treat warnings as failures (e.g. in a deploy pipeline).
    python -m scripts.check_env --env-file /opt/weatherify/.env --strict
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path

import httpx
from pydantic import ValidationError

from weatherify.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_WARNINGS = 3
EXIT_RUNTIME_ERROR = 5

CALLBACK_PATH = "/api/v1/auth/spotify/callback"
LOOPBACK_HOSTS = frozenset({"127.0.0.1", "::1", "[::1]"})


@dataclass(frozen=True)
class Finding:
    severity: str  # "error" or "warning"
    key: str
    message: str

    def __str__(self) -> str:
        return f"[{self.severity}] {self.key}: {self.message}"


def _check_redirect_uri(settings: AppSettings) -> list[Finding]:
    redirect = settings.spotify.redirect_uri
    findings: list[Finding] = []
    if (redirect.path or "").rstrip("/") != CALLBACK_PATH:
        findings.append(
            Finding(
                "error",
                "SPOTIFY_REDIRECT_URI",
                f"path is {redirect.path!r}; expected {CALLBACK_PATH!r}.",
            )
        )
    if redirect.scheme == "http" and redirect.host not in LOOPBACK_HOSTS:
        findings.append(
            Finding(
                "error",
                "SPOTIFY_REDIRECT_URI",
                "Spotify requires https unless the host is a loopback address "
                f"(got {redirect.host!r}).",
            )
        )
    return findings


def _check_secrets(settings: AppSettings) -> list[Finding]:
    security = settings.security
    findings: list[Finding] = []
    for key, value in (
        ("SESSION_SECRET", security.session_secret),
        ("TOKEN_ENCRYPTION_SECRET", security.token_encryption_secret),
    ):
        if not value:
            findings.append(
                Finding("warning", key, "unset; falling back to SPOTIFY_CLIENT_SECRET.")
            )
    if (
        security.session_secret
        and security.session_secret == security.token_encryption_secret
    ):
        findings.append(
            Finding(
                "warning",
                "SESSION_SECRET",
                "same value as TOKEN_ENCRYPTION_SECRET; use independent secrets.",
            )
        )
    return findings


def _check_origins(settings: AppSettings) -> list[Finding]:
    findings: list[Finding] = []
    for origin in settings.cors_allow_origins:
        if origin == "*":
            findings.append(
                Finding(
                    "error",
                    "CORS_ALLOW_ORIGINS",
                    "'*' cannot be combined with credentialed requests.",
                )
            )
            continue
        try:
            url = httpx.URL(origin)
        except httpx.InvalidURL:
            url = None
        if (
            url is None
            or url.scheme not in ("http", "https")
            or not url.host
            or url.path not in ("", "/")
            or url.query
        ):
            findings.append(
                Finding(
                    "error",
                    "CORS_ALLOW_ORIGINS",
                    f"{origin!r} is not an origin (scheme://host[:port]).",
                )
            )

    if settings.frontend_base_url.scheme == "https" and not settings.security.session_cookie_secure:
        findings.append(
            Finding(
                "warning",
                "SESSION_COOKIE_SECURE",
                "front-end is served over https but the session cookie is not marked Secure.",
            )
        )
    return findings


def collect_findings(settings: AppSettings) -> list[Finding]:
    """Return every deployment problem detected in ``settings``."""
    return [
        *_check_redirect_uri(settings),
        *_check_secrets(settings),
        *_check_origins(settings),
    ]


def _load_settings(env_file: Path) -> AppSettings:
    if not env_file.exists():
        raise FileNotFoundError(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool."
        )
    _load_env_file(str(env_file))
    return AppSettings()  # type: ignore[call-arg]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate Weatherify settings and flag risky deployment values."
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the repo root).",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero when only warnings are reported.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = _load_settings(args.env_file)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    findings = collect_findings(settings)
    for finding in findings:
        print(finding, file=sys.stderr)

    if any(finding.severity == "error" for finding in findings):
        return EXIT_VALIDATION_ERROR
    if findings and args.strict:
        return EXIT_WARNINGS
    print("Environment OK.")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
