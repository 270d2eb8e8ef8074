"""Core utilities shared by the contribux packages."""
