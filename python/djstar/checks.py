"""
Django system checks for djstar.

Registers checks with Django's check framework that also run via
``python manage.py check``:

- djstar.C001 -- SessionMiddleware missing (locked signals and flash need it)
- djstar.C002 -- DjstarMiddleware not installed
- djstar.C003 -- DjstarMiddleware placed before SessionMiddleware
- djstar.C004 -- DjstarMiddleware is not the innermost middleware
"""

from django.core.checks import Error, Warning, register

MIDDLEWARE_PATH = "djstar.middleware.DjstarMiddleware"
SESSION_MIDDLEWARE_PATH = "django.contrib.sessions.middleware.SessionMiddleware"


@register("djstar")
def check_configuration(app_configs, **kwargs):
    """Validate the settings djstar depends on."""
    from django.conf import settings

    errors = []
    middleware = list(getattr(settings, "MIDDLEWARE", None) or [])

    # C001 -- sessions
    if SESSION_MIDDLEWARE_PATH not in middleware:
        errors.append(
            Error(
                f"'{SESSION_MIDDLEWARE_PATH}' is not in MIDDLEWARE.",
                hint="Locked signals and flash data are stored in the session.",
                id="djstar.C001",
            )
        )

    # C002 -- middleware installed
    if MIDDLEWARE_PATH not in middleware:
        errors.append(
            Warning(
                f"'{MIDDLEWARE_PATH}' is not in MIDDLEWARE.",
                hint=(
                    "Views returning star(request) need the middleware to become HTTP "
                    "responses, and flash data is only aged by it."
                ),
                id="djstar.C002",
            )
        )
        return errors

    position = middleware.index(MIDDLEWARE_PATH)

    # C003 -- after SessionMiddleware
    if SESSION_MIDDLEWARE_PATH in middleware and middleware.index(SESSION_MIDDLEWARE_PATH) > position:
        errors.append(
            Error(
                f"'{MIDDLEWARE_PATH}' must come after '{SESSION_MIDDLEWARE_PATH}'.",
                hint="Move DjstarMiddleware below SessionMiddleware in MIDDLEWARE.",
                id="djstar.C003",
            )
        )

    # C004 -- innermost
    if position != len(middleware) - 1:
        errors.append(
            Warning(
                f"'{MIDDLEWARE_PATH}' is not the last entry of MIDDLEWARE.",
                hint=(
                    "Middleware listed after it receives StarResponse objects instead of "
                    "HTTP responses. Make it the last entry."
                ),
                id="djstar.C004",
            )
        )

    return errors
