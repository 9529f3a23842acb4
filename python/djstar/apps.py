import logging

from django.apps import AppConfig


class DjstarConfig(AppConfig):
    name = "djstar"
    verbose_name = "djstar"

    def ready(self):
        # Import checks module so @register() decorators are executed
        import djstar.checks  # noqa: F401

        # Logger filters do not apply to records propagated from child
        # loggers, so the sanitizer goes on every djstar.* logger.
        from djstar.security import DjstarLogSanitizerFilter

        sanitizer = DjstarLogSanitizerFilter()
        names = ["djstar"] + [
            name for name in logging.root.manager.loggerDict if name.startswith("djstar.")
        ]
        for name in names:
            logging.getLogger(name).addFilter(sanitizer)
