# overlay/__init__.py
"""
Keep this file minimal so 'overlay' is always a proper package.

Do NOT import submodules here (e.g., don't import main).
Tests and runtime should import from 'overlay.main' directly:
    from overlay.main import create_app
And Uvicorn should use:
    uvicorn overlay.main:create_app --factory
"""
