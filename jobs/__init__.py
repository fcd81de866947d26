"""Background jobs: dramatiq broker and actors."""
