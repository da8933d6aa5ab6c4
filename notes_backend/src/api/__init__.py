"""
FastAPI Notes Backend package.

Marks the 'src.api' directory as a Python package. The application lives in
``src.api.main`` (``app`` instance, ``create_app`` factory and ``run`` entry
point).
"""
