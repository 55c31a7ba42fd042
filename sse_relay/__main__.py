"""Allow running as `python -m sse_relay`."""

from sse_relay.cli import main_entry

if __name__ == "__main__":
    main_entry()
