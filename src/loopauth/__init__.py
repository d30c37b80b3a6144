"""loopauth -- OAuth2 Authorization Code + PKCE login for desktop clients.

This package runs the browser-based authorization flow for a public client:
it binds a single-shot redirect receiver on the loopback interface, opens
the provider's authorize page, captures the redirect, and exchanges the
code (with its PKCE verifier) for an access/refresh token pair.

Typical workflow::

    loopauth config set client_id my-desktop-app
    loopauth login                    # browser login, prints the credential
    loopauth refresh                  # refresh grant from LOOPAUTH_REFRESH_TOKEN

Library use::

    from loopauth.models import OAuthSettings
    from loopauth.session import AuthorizationSession

    with AuthorizationSession(OAuthSettings()) as session:
        session.initialize("my-desktop-app", "/oauth/redirect")
        credential = session.exchange_code(session.begin_authorization())

Modules:
    app: Typer application and CLI entry point.
    session: Authorization session orchestrating the flow.
    receiver: Loopback redirect receiver and callback parsing.
    exchange: Token endpoint client for the code and refresh grants.
    pkce: PKCE verifier/challenge generation.
    browser: Browser launch strategies.
    credentials: Thread-safe credential holder.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
