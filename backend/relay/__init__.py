"""Host-mediated chat and roster relay."""
