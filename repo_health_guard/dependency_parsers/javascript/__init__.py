"""JavaScript (npm) manifest parsers."""
