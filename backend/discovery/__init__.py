"""UDP broadcast discovery of a LAN host."""
