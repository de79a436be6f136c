# Path: pyminres/tests/__init__.py
