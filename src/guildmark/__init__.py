"""Guildmark: apprentice hours, quotas and achievement reconciliation."""
