"""Command-line interface for gopcache."""
