"""Backoffice package initialization.

Models are loaded on demand by `load_all_models()`, which runs when the
FastAPI app is created via `register_app()` and before table creation or
migrations.
"""

__version__ = '0.3.0'

_models_loaded = False


def load_all_models():
    """Import every model module so their tables register on the metadata.

    Idempotent: calling it more than once has no effect after the first call.
    """
    global _models_loaded
    if _models_loaded:
        return

    import backoffice.app.billing.model  # noqa: F401
    import backoffice.app.credit.model  # noqa: F401
    import backoffice.app.gateway.model  # noqa: F401
    import backoffice.app.llm.model  # noqa: F401
    import backoffice.app.log.model  # noqa: F401
    import backoffice.app.tenant.model  # noqa: F401

    _models_loaded = True
