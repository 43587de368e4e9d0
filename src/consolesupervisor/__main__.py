"""Module entrypoint for `python -m consolesupervisor`."""

try:
    from .cli import run
except ImportError:
    # Script execution (runpy.run_path) has no package context.
    from consolesupervisor.cli import run


if __name__ == "__main__":
    raise SystemExit(run())
