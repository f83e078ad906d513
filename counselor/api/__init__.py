# counselor/api/__init__.py
