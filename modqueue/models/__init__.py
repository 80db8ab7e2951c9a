"""Domain models shared by every engine component."""
