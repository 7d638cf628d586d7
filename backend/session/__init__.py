"""Session role, roster, dispatch and transport."""
