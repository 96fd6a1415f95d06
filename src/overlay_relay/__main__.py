"""Run the relay server with ``python -m overlay_relay``."""

from overlay_relay.server import main

main()
