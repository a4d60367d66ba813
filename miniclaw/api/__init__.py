"""HTTP surface: multi-session runner and Starlette app."""
