# counselor/__init__.py
