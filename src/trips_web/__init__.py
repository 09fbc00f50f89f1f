# src/trips_web/__init__.py
