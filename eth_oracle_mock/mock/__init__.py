"""Mock feed injection and price control."""
