"""External collaborators: Outcome Source, Settlement Ledger, announcements."""
