"""Evidence quality scoring, source tiers, gates and pivot decisions."""
