"""Study Portal application package."""
