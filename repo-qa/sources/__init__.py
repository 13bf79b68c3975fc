"""Content sources that turn repositories and saved pages into Documents."""
