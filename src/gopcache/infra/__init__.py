"""Infrastructure layer: settings, logging, exceptions and range storage."""
