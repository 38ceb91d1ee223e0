"""Personal book library with filesystem ownership scanning."""
