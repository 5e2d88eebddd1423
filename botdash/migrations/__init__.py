from botdash.migrations.runner import discover_migrations, run_migrations

__all__ = ["discover_migrations", "run_migrations"]
