"""Domain models and store wiring for CaseKeeper."""
